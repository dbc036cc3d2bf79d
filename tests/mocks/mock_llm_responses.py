"""Raw vision-model replies captured in the shapes the recovery parser must handle."""

SIMPLE_PYTHON_QUOTED = "[{'expr': '2 + 3 * 4', 'result': 14}]"

FENCED_WITH_COMMENTARY = (
    "Sure! Here is the solution to your drawing:\n"
    "```json\n"
    '[{"expr": "x", "result": 2, "assign": true}, {"expr": "y", "result": 5, "assign": true}]\n'
    "```\n"
    "Let me know if you need anything else."
)

STEP_BY_STEP = """[
  {
    "expr": "x^2 - 5x + 6 = 0",
    "result": "x = 2, x = 3",
    "assign": false,
    "problem_type": "algebra",
    "steps": [
      {"description": "Factor the quadratic", "expression": "(x - 2)(x - 3) = 0"},
      {"description": "Set each factor to zero", "expression": "x = 2 or x = 3"}
    ],
    "method": "Factoring"
  }
]"""

PYTHON_LITERALS = "[{'expr': 'x', 'result': 4, 'assign': True}, {'expr': 'y', 'result': 5, 'assign': False}]"

APOSTROPHE_IN_JSON = '[{"expr": "Newton\'s second law", "result": "F = ma", "problem_type": "other"}]'

UNRECOVERABLE = "I'm sorry, I could not make out any mathematics in this drawing."
