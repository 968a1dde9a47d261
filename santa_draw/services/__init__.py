from santa_draw.services.assignment import (
    AssignmentError,
    DrawFailure,
    DrawFailureReason,
    DrawPolicy,
    DrawResult,
    DrawSuccess,
    DrawValidationError,
    draw,
    generate_assignments,
)
from santa_draw.services.draw_flow import DrawFlowError, init_draw, perform_draw

__all__ = [
    "AssignmentError",
    "DrawFailure",
    "DrawFailureReason",
    "DrawPolicy",
    "DrawResult",
    "DrawSuccess",
    "DrawValidationError",
    "DrawFlowError",
    "draw",
    "generate_assignments",
    "init_draw",
    "perform_draw",
]
