"""
Amazon Bedrock service module.
Handles all interactions with the Bedrock runtime API: streaming tool-use
turns, plain-text completions, and translation between stored turns and
Anthropic Messages wire format.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from config import aws_config, model_config
from agent.turns import (
    Turn, TextPart, ToolCallPart, ToolResultPart, InlineMediaPart,
    ROLE_MODEL,
)
from errors import UpstreamError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"

# Media types Claude accepts inline
IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}
DOCUMENT_MIME_TYPES = {"application/pdf"}

# Exception events that can arrive inside a response stream
_STREAM_EXCEPTION_KEYS = {
    "internalServerException": ("InternalServerException", 500),
    "modelStreamErrorException": ("ModelStreamErrorException", 424),
    "throttlingException": ("ThrottlingException", 429),
    "validationException": ("ValidationException", 400),
    "modelTimeoutException": ("ModelTimeoutException", 408),
    "serviceUnavailableException": ("ServiceUnavailableException", 503),
}


class BedrockError(UpstreamError):
    """Bedrock call failure carrying the HTTP status and error code when known."""


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = field(default_factory=lambda: model_config.max_tokens)
    temperature: Optional[float] = field(default_factory=lambda: model_config.temperature)
    enable_thinking: bool = field(default_factory=lambda: model_config.enable_thinking)
    thinking_budget: int = field(default_factory=lambda: model_config.thinking_budget)


# ============================================================
# Wire format
# ============================================================

def _media_block(part: InlineMediaPart) -> Dict[str, Any]:
    mime = (part.mime_type or "").lower()
    data = base64.b64encode(part.data).decode("ascii")
    if mime in IMAGE_MIME_TYPES:
        return {"type": "image", "source": {"type": "base64", "media_type": mime, "data": data}}
    if mime in DOCUMENT_MIME_TYPES:
        return {"type": "document", "source": {"type": "base64", "media_type": mime, "data": data}}
    return {"type": "text", "text": f"[Attached {mime or 'binary'} file ({len(part.data)} bytes) omitted: format not supported by the model]"}


def _part_blocks(part: Any) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    token = getattr(part, "continuation_token", None)
    if isinstance(token, dict) and token.get("type"):
        blocks.append(token)
    elif isinstance(token, list):
        blocks.extend(t for t in token if isinstance(t, dict) and t.get("type"))

    if isinstance(part, TextPart):
        if part.text.strip():
            blocks.append({"type": "text", "text": part.text})
    elif isinstance(part, ToolCallPart):
        blocks.append({"type": "tool_use", "id": part.call_id, "name": part.name, "input": part.args or {}})
    elif isinstance(part, ToolResultPart):
        block: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": part.call_id,
            "content": part.error if part.error is not None else (part.result or "(no output)"),
        }
        if part.error is not None:
            block["is_error"] = True
        blocks.append(block)
    elif isinstance(part, InlineMediaPart):
        blocks.append(_media_block(part))
    return blocks


def turns_to_messages(turns: List[Turn]) -> List[Dict[str, Any]]:
    """Convert stored turns to Anthropic messages.

    model turns go out as "assistant"; user and tool turns both go out as
    "user" (tool results travel as tool_result blocks). Adjacent messages with
    the same wire role are merged.
    """
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        wire_role = "assistant" if turn.role == ROLE_MODEL else "user"
        content: List[Dict[str, Any]] = []
        for part in turn.parts:
            content.extend(_part_blocks(part))
        if not content:
            continue
        if messages and messages[-1]["role"] == wire_role:
            messages[-1]["content"].extend(content)
        else:
            messages.append({"role": wire_role, "content": content})
    return messages


class StreamAssembler:
    """Folds stream events into the parts of a finalized model turn.

    A reasoning block (with its signature) is kept as the opaque
    continuation token of the next emitted part.
    """

    def __init__(self) -> None:
        self.parts: List[Any] = []
        self.stop_reason: Optional[str] = None
        self._text: Optional[List[str]] = None
        self._tool: Optional[Dict[str, Any]] = None
        self._thinking: Optional[List[str]] = None
        self._pending_tokens: List[Dict[str, Any]] = []

    def _take_token(self) -> Any:
        if not self._pending_tokens:
            return None
        tokens, self._pending_tokens = self._pending_tokens, []
        return tokens[0] if len(tokens) == 1 else tokens

    def feed(self, event: Dict[str, Any]) -> None:
        etype = event.get("type")
        if etype == "text_start":
            self._text = []
        elif etype == "text":
            if self._text is None:
                self._text = []
            self._text.append(event.get("content", ""))
        elif etype == "text_end":
            text = "".join(self._text or [])
            self._text = None
            if text:
                self.parts.append(TextPart(text=text, continuation_token=self._take_token()))
        elif etype == "thinking_start":
            self._thinking = []
        elif etype == "thinking":
            if self._thinking is None:
                self._thinking = []
            self._thinking.append(event.get("content", ""))
        elif etype == "thinking_end":
            block: Dict[str, Any] = {"type": "thinking", "thinking": "".join(self._thinking or [])}
            if event.get("signature"):
                block["signature"] = event["signature"]
            self._thinking = None
            self._pending_tokens.append(block)
        elif etype == "redacted_thinking":
            self._pending_tokens.append({"type": "redacted_thinking", "data": event.get("data", "")})
        elif etype == "tool_use_start":
            data = event.get("data") or {}
            self._tool = {"id": data.get("id", ""), "name": data.get("name", ""), "json": []}
        elif etype == "tool_use_delta":
            if self._tool is not None:
                self._tool["json"].append(event.get("content", ""))
        elif etype == "tool_use_end":
            tool, self._tool = self._tool, None
            if tool is None:
                return
            raw = "".join(tool["json"]).strip()
            try:
                args = json.loads(raw) if raw else {}
            except json.JSONDecodeError:
                logger.warning(f"Unparseable tool input for {tool['name']}: {raw[:200]}")
                args = {}
            if not isinstance(args, dict):
                args = {}
            self.parts.append(ToolCallPart(
                name=tool["name"], args=args, call_id=tool["id"],
                continuation_token=self._take_token(),
            ))
        elif etype == "message_end":
            self.stop_reason = event.get("stop_reason")

    def finish(self) -> List[Any]:
        """Close any open text block and return the parts."""
        if self._text:
            self.feed({"type": "text_end"})
        return self.parts


# ============================================================
# Service
# ============================================================

def _client_error(e: ClientError, prefix: str) -> BedrockError:
    err = e.response.get("Error", {})
    code = err.get("Code") or "Unknown"
    message = err.get("Message") or str(e)
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    logger.error(f"Bedrock API error: {code} ({status}) - {message}")
    if code in ("ExpiredTokenException", "InvalidSignatureException"):
        return BedrockError("AWS credentials expired. Please refresh.", status=status, code=code)
    return BedrockError(f"{prefix}: {message}", status=status, code=code)


def _transport_error(e: BotoCoreError, prefix: str) -> BedrockError:
    if isinstance(e, (ReadTimeoutError, ConnectTimeoutError)):
        code = "TimeoutError"
    elif isinstance(e, (EndpointConnectionError, ConnectionClosedError)):
        code = "ConnectionError"
    else:
        code = type(e).__name__
    logger.error(f"Bedrock transport error: {code} - {e}")
    return BedrockError(f"{prefix}: {e}", code=code)


class BedrockService:
    """
    Service class for Amazon Bedrock interactions.
    Supports tool use, extended thinking and plain-text completions.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self._client = client
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            # Coding turns run for minutes; retries are the queue's job
            boto_config = BotoConfig(
                read_timeout=model_config.read_timeout,
                connect_timeout=30,
                retries={"max_attempts": 2, "mode": "standard"},
            )
            return session.client("bedrock-runtime", config=boto_config)

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except BotoCoreError as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _format_request_body(
        self,
        messages: List[Dict],
        system_prompt: Optional[str],
        config: GenerationConfig,
        tools: Optional[List[Dict]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": config.max_tokens,
            "messages": messages,
        }
        if config.enable_thinking:
            # budget must leave room for the answer itself
            budget = min(config.thinking_budget, max(config.max_tokens - 4000, 1024))
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        elif config.temperature is not None:
            body["temperature"] = config.temperature
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = tools
        return body

    def generate_response_stream(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict]] = None,
        config: Optional[GenerationConfig] = None,
        model_id: Optional[str] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        """
        Generate a streaming response using Amazon Bedrock.
        Yields dictionaries with 'type' and 'content'.
        Types: thinking_start, thinking, thinking_end, redacted_thinking, text_start,
               text, text_end, tool_use_start, tool_use_delta, tool_use_end, message_end
        """
        current_model = model_id or self.model_id
        gen_config = config or GenerationConfig()
        request_body = self._format_request_body(messages, system_prompt, gen_config, tools=tools)

        try:
            logger.info(f"Streaming from model: {current_model}")
            response = self.client.invoke_model_with_response_stream(
                modelId=current_model,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )

            current_block_type = "text"
            current_thinking_signature = None

            for event in response["body"]:
                if "chunk" not in event:
                    for key, (code, status) in _STREAM_EXCEPTION_KEYS.items():
                        if key in event:
                            message = (event[key] or {}).get("message", code)
                            raise BedrockError(f"Streaming error: {message}", status=status, code=code)
                    continue

                chunk = json.loads(event["chunk"]["bytes"])
                event_type = chunk.get("type", "")

                if event_type == "content_block_start":
                    block = chunk.get("content_block", {})
                    current_block_type = block.get("type", "text")

                    if current_block_type == "thinking":
                        yield {"type": "thinking_start", "content": ""}
                    elif current_block_type == "redacted_thinking":
                        yield {"type": "redacted_thinking", "content": "", "data": block.get("data", "")}
                    elif current_block_type == "text":
                        yield {"type": "text_start", "content": ""}
                        if block.get("text"):
                            yield {"type": "text", "content": block["text"]}
                    elif current_block_type == "tool_use":
                        yield {
                            "type": "tool_use_start",
                            "content": "",
                            "data": {"id": block.get("id", ""), "name": block.get("name", "")},
                        }

                elif event_type == "content_block_delta":
                    delta = chunk.get("delta", {})
                    delta_type = delta.get("type", "")

                    if delta_type == "thinking_delta":
                        if delta.get("thinking"):
                            yield {"type": "thinking", "content": delta["thinking"]}
                    elif delta_type == "signature_delta":
                        sig = delta.get("signature", "")
                        if sig:
                            current_thinking_signature = (current_thinking_signature or "") + sig
                    elif delta_type == "text_delta":
                        if delta.get("text"):
                            yield {"type": "text", "content": delta["text"]}
                    elif delta_type == "input_json_delta":
                        if delta.get("partial_json"):
                            yield {"type": "tool_use_delta", "content": delta["partial_json"]}

                elif event_type == "content_block_stop":
                    if current_block_type == "thinking":
                        yield {"type": "thinking_end", "content": "", "signature": current_thinking_signature}
                        current_thinking_signature = None
                    elif current_block_type == "text":
                        yield {"type": "text_end", "content": ""}
                    elif current_block_type == "tool_use":
                        yield {"type": "tool_use_end", "content": ""}

                elif event_type == "message_delta":
                    yield {
                        "type": "message_end",
                        "content": "",
                        "usage": chunk.get("usage", {}),
                        "stop_reason": chunk.get("delta", {}).get("stop_reason"),
                    }

        except ClientError as e:
            raise _client_error(e, "Streaming error")
        except BotoCoreError as e:
            raise _transport_error(e, "Streaming error")

    def generate_text(self, prompt: str, model_id: Optional[str] = None, max_tokens: int = 200) -> str:
        """Plain-text completion without tools or thinking."""
        body = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        current_model = model_id or model_config.commit_model_id
        try:
            logger.info(f"Invoking model: {current_model}")
            response = self.client.invoke_model(
                modelId=current_model,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            raise _client_error(e, "Bedrock API error")
        except BotoCoreError as e:
            raise _transport_error(e, "Bedrock API error")

        return "".join(
            b.get("text", "") for b in response_body.get("content", []) if b.get("type") == "text"
        ).strip()
