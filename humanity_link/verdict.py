# humanity_link/verdict.py
"""
Output contract of the proof backend.

`leo run` prints the program outputs as bullet lines, e.g.

    ➡️  Output

     • true

A verdict is only accepted from a line that reads exactly `• true` or
`• false` once stripped. Anything else is contract drift and is reported,
never folded into a negative verdict.
"""
from humanity_link.errors import UnrecognizedFormat

OUTPUT_CONTRACT = "leo-bullet-bool/1"

TRUE_TOKEN = "• true"
FALSE_TOKEN = "• false"


def parse(raw_output: str) -> bool:
    if not isinstance(raw_output, str):
        raise UnrecognizedFormat(f"expected text output, got {type(raw_output).__name__}")
    lines = {line.strip() for line in raw_output.splitlines()}
    has_true = TRUE_TOKEN in lines
    has_false = FALSE_TOKEN in lines
    if has_true and has_false:
        raise UnrecognizedFormat(f"conflicting verdict lines ({OUTPUT_CONTRACT})")
    if not (has_true or has_false):
        raise UnrecognizedFormat(f"no bulleted boolean in backend output ({OUTPUT_CONTRACT})")
    return has_true
