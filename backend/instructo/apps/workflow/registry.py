from __future__ import annotations

from .guards import guard_project_complete, guard_trainee_complete

# Terminal states map to {} so every legal move is listed explicitly;
# anything absent is an invalid transition.
WORKFLOWS = {
    "trainee": {
        "transitions": {
            "pending_approval": {
                "approved": [],
                "rejected": [],
            },
            "approved": {
                "active": [],
            },
            "active": {
                "completed": [guard_trainee_complete],
            },
            "rejected": {},
            "completed": {},
        }
    },
    "project": {
        "transitions": {
            "assigned": {"in_progress": []},
            "in_progress": {"completed": [guard_project_complete]},
            "completed": {},
        }
    },
    "progress_review": {
        "transitions": {
            "in_review": {"completed": []},
            "completed": {},
        }
    },
}
