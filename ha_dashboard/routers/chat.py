import json
from uuid import uuid4

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ha_dashboard.core.errors import MalformedInput
from ha_dashboard.models.schemas import ChatRequest, ChatResponse
from ha_dashboard.services.session_service import handle_chat

router = APIRouter(prefix="/api", tags=["chat"])


def _validation_details(ex: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(x) for x in err.get('loc', ())) or 'body'}: {err.get('msg', '')}" for err in ex.errors()
    )


async def parse_chat_request(request: Request) -> ChatRequest:
    try:
        payload = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError) as ex:
        raise MalformedInput(details=f"request body is not valid JSON: {ex}") from None

    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as ex:
        raise MalformedInput(details=_validation_details(ex)) from None


@router.post("/chat", response_model=ChatResponse, responses={400: {}, 500: {}, 502: {}, 504: {}})
async def chat(request: Request) -> ChatResponse:
    req = await parse_chat_request(request)
    trace_id = request.headers.get("x-trace-id") or uuid4().hex
    return await handle_chat(req, trace_id=trace_id)


@router.api_route("/chat", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def chat_method_not_allowed() -> JSONResponse:
    return JSONResponse(status_code=405, content={"error": "Method not allowed"}, headers={"Allow": "POST"})
