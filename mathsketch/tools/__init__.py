"""Image and text helpers shared by the service and the client."""

from .images import ImagePayload, encode_image_bytes, infer_image_media_type, parse_image_data_url
from .recovery import decode_model_payload, parse_solution_text, recover_json_text

__all__ = [
    "ImagePayload",
    "encode_image_bytes",
    "infer_image_media_type",
    "parse_image_data_url",
    "decode_model_payload",
    "parse_solution_text",
    "recover_json_text",
]
