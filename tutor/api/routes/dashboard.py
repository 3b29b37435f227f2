from fastapi import APIRouter, Request

router = APIRouter()


def status_payload(orchestrator) -> dict:
    state = orchestrator.state
    error = orchestrator.error
    return {
        "status": orchestrator.status.value,
        "message": orchestrator.status.message,
        "current_transcript": orchestrator.current_transcript,
        "error": error.to_dict() if error else None,
        "is_supported": orchestrator.is_supported,
        "can_start": state.can_start,
        "message_count": len(orchestrator.conversation),
    }


@router.get("/status")
async def get_status(request: Request):
    """Everything the status line, mic button and start button need."""
    return status_payload(request.app.state.orchestrator)
