from fastapi import APIRouter, HTTPException, Request

from api.routes.dashboard import status_payload

router = APIRouter()


@router.get("/")
async def get_conversation(request: Request):
    """The messages exchanged so far, oldest first."""
    orchestrator = request.app.state.orchestrator
    return {"messages": [msg.to_dict() for msg in orchestrator.conversation]}


@router.post("/start")
async def start_lesson(request: Request):
    """Start the lesson with the tutor's opening line."""
    orchestrator = request.app.state.orchestrator
    if orchestrator.state.start_blocked:
        raise HTTPException(status_code=409, detail=status_payload(orchestrator))
    await orchestrator.start_conversation()
    return status_payload(orchestrator)


@router.post("/toggle")
async def toggle_listening(request: Request):
    """Mic button: start listening, or stop if already listening."""
    orchestrator = request.app.state.orchestrator
    if not orchestrator.is_supported:
        raise HTTPException(status_code=409, detail="Voice recognition is not supported on this device.")
    orchestrator.toggle_listening()
    return status_payload(orchestrator)


@router.post("/reset")
async def reset_conversation(request: Request):
    """Forget the conversation and return to idle."""
    orchestrator = request.app.state.orchestrator
    orchestrator.reset()
    return status_payload(orchestrator)
