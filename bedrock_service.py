"""
Amazon Bedrock service module.
Implements the LLMClient contract for Anthropic Claude models on Bedrock.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError

from config import (
    aws_config,
    model_config,
    app_config,
    agent_settings,
    get_model_by_id,
    get_max_output_tokens,
    requires_inference_profile,
)
from llm_client import LLMClient, LLMStreamEvent, ToolStepResponse, assemble_stream

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"


class BedrockError(Exception):
    """A Bedrock call failed; code carries the botocore error code"""

    def __init__(self, message: str, code: str = "Unknown"):
        super().__init__(message)
        self.code = code


class BedrockToolsNotSupportedError(BedrockError):
    """The selected model rejected the tools parameter"""


def _client_error_to_bedrock(e: ClientError, context: str = "Bedrock API error") -> BedrockError:
    error_code = e.response.get('Error', {}).get('Code', 'Unknown')
    error_message = e.response.get('Error', {}).get('Message', str(e))
    logger.error(f"{context}: {error_code} - {error_message}")
    lowered = error_message.lower()

    if error_code in ['ExpiredTokenException', 'InvalidSignatureException', 'UnrecognizedClientException']:
        return BedrockError("AWS credentials expired. Please refresh.", code=error_code)
    if error_code == 'AccessDeniedException':
        return BedrockError(f"Access denied: {error_message}", code=error_code)
    if error_code in ['ThrottlingException', 'TooManyRequestsException', 'ServiceQuotaExceededException']:
        return BedrockError(f"Rate limited by Bedrock: {error_message}", code=error_code)
    if error_code == 'ResourceNotFoundException':
        return BedrockError(f"Model not found: {error_message}", code=error_code)
    if error_code == 'ValidationException':
        if "tool" in lowered and ("support" in lowered or "not allowed" in lowered or "extraneous" in lowered):
            return BedrockToolsNotSupportedError(
                f"This model does not support tool calling: {error_message}", code="ToolsNotSupported"
            )
        if "too long" in lowered or "context" in lowered or "too many tokens" in lowered:
            return BedrockError(f"Context length exceeded: {error_message}", code="ContextLengthExceeded")
    if error_code in ['ModelTimeoutException', 'ServiceUnavailableException', 'InternalServerException',
                      'ModelNotReadyException']:
        return BedrockError(f"Bedrock service unavailable: {error_message}", code=error_code)
    return BedrockError(f"{context}: {error_message}", code=error_code)


class BedrockService(LLMClient):
    """
    Service class for Amazon Bedrock interactions.
    complete_text backs decision prompts; complete_with_tools drives the step loop.
    """

    provider = "anthropic"

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        decision_model_id: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Any = None,
    ):
        self._model_id = model_id or model_config.model_id
        self.decision_model_id = decision_model_id or model_config.decision_model_id or self._model_id
        self.region = region or aws_config.region
        self.temperature = agent_settings.agent_temperature if temperature is None else temperature
        self.client = client or self._create_client()
        logger.info(f"BedrockService initialized with model: {self._model_id}")

    @property
    def model_id(self) -> str:
        return self._model_id

    def _create_client(self) -> Any:
        """boto3 bedrock-runtime client with the configured credentials and retries"""
        try:
            session_kwargs: Dict[str, Any] = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client(
                "bedrock-runtime",
                config=BotoConfig(read_timeout=int(app_config.llm_call_timeout), retries={"max_attempts": 2}),
            )
        except (NoCredentialsError, PartialCredentialsError):
            raise BedrockError("AWS credentials not configured.", code="NoCredentials")
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _get_model_identifier(self, model_id: str) -> str:
        """Inference profile or base model ID, depending on throughput mode"""
        if model_config.throughput_mode == "cross-region":
            if model_id.startswith(("us.", "eu.", "ap.")):
                return model_id
            if requires_inference_profile(model_id):
                prefix = "eu" if self.region.startswith("eu-") else "ap" if self.region.startswith("ap-") else "us"
                return f"{prefix}.{model_id}"
        model = get_model_by_id(model_id)
        return model.get("base_id", model_id) if model else model_id

    @staticmethod
    def _ensure_non_empty(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """The API rejects empty content on any message but a final assistant turn."""
        out = []
        for msg in messages:
            content = msg.get("content")
            if isinstance(content, str) and not content.strip():
                content = "(empty)"
            elif isinstance(content, list) and not content:
                content = [{"type": "text", "text": "(empty)"}]
            out.append({"role": msg["role"], "content": content})
        return out

    def _request_body(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str],
        model_id: str,
        max_tokens: int,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": min(max_tokens, get_max_output_tokens(model_id)),
            "messages": self._ensure_non_empty(messages),
            "temperature": self.temperature,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = tools
        return body

    def complete_text(self, system: str, user: str) -> str:
        """One-shot, non-streaming completion used for decision prompts."""
        model_id = self.decision_model_id
        body = self._request_body(
            [{"role": "user", "content": user}], system, model_id, model_config.decision_max_tokens
        )
        try:
            logger.debug(f"Invoking model for decision: {model_id}")
            response = self.client.invoke_model(
                modelId=self._get_model_identifier(model_id),
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            raise _client_error_to_bedrock(e)
        except (KeyError, ValueError) as e:
            raise BedrockError(f"Failed to parse model response: {e}", code="InvalidResponse")
        return "".join(
            block.get("text", "") for block in response_body.get("content", []) if block.get("type") == "text"
        ).strip()

    def stream_with_tools(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> Iterator[LLMStreamEvent]:
        """
        Stream a tool-enabled completion.
        Yields LLMStreamEvents: text_delta, tool_call_start, tool_call_delta,
        tool_call_end, usage, stop.
        """
        model_id = self._model_id
        body = self._request_body(messages, system, model_id, model_config.max_tokens, tools=tools)
        try:
            logger.info(f"Streaming from model: {self._get_model_identifier(model_id)}")
            response = self.client.invoke_model_with_response_stream(
                modelId=self._get_model_identifier(model_id),
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            current_block_type = "text"
            current_tool_id = ""
            for event in response["body"]:
                chunk = json.loads(event["chunk"]["bytes"])
                event_type = chunk.get("type", "")

                if event_type == "content_block_start":
                    block = chunk.get("content_block", {})
                    current_block_type = block.get("type", "text")
                    if current_block_type == "tool_use":
                        current_tool_id = block.get("id", "")
                        yield LLMStreamEvent(type="tool_call_start", tool_call_id=current_tool_id,
                                             name=block.get("name", ""))

                elif event_type == "content_block_delta":
                    delta = chunk.get("delta", {})
                    delta_type = delta.get("type", "")
                    if delta_type == "text_delta" and delta.get("text"):
                        yield LLMStreamEvent(type="text_delta", text=delta["text"])
                    elif delta_type == "input_json_delta" and delta.get("partial_json"):
                        yield LLMStreamEvent(type="tool_call_delta", tool_call_id=current_tool_id,
                                             text=delta["partial_json"])

                elif event_type == "content_block_stop":
                    if current_block_type == "tool_use":
                        yield LLMStreamEvent(type="tool_call_end", tool_call_id=current_tool_id)
                    current_block_type = "text"

                elif event_type == "message_start":
                    msg_usage = chunk.get("message", {}).get("usage", {})
                    if msg_usage:
                        yield LLMStreamEvent(type="usage", usage=msg_usage)

                elif event_type == "message_delta":
                    usage = chunk.get("usage", {})
                    if usage:
                        yield LLMStreamEvent(type="usage", usage=usage)
                    yield LLMStreamEvent(type="stop", stop_reason=chunk.get("delta", {}).get("stop_reason"))

        except ClientError as e:
            raise _client_error_to_bedrock(e, context="Bedrock streaming error")

    def complete_with_tools(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        on_event: Optional[Callable[[LLMStreamEvent], None]] = None,
    ) -> ToolStepResponse:
        return assemble_stream(self.stream_with_tools(system, messages, tools), on_event=on_event)

    def test_connection(self) -> tuple:
        """Round-trip a tiny prompt to check credentials and model access"""
        try:
            self.complete_text("Reply with OK.", "Hi")
            return True, "Connection successful"
        except Exception as e:
            return False, str(e)
