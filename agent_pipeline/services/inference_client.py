"""
Inference Client

HTTP client for the model inference backend (Ollama-compatible
``/api/generate`` endpoint).
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from agent_pipeline.exceptions import OperationTimeoutError, TaskExecutionError
from agent_pipeline.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class InferenceResponse:
    """Normalized backend answer"""
    output: str
    model: str
    tokens_used: int = 0
    cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"response": self.output, "model": self.model}


def build_prompt(input_data: Dict[str, Any], agent_config: Dict[str, Any]) -> str:
    """
    Render the prompt sent to the backend

    Uses ``input_data["message"]`` when present, otherwise the whole input as
    JSON. The agent's ``system_prompt`` is prepended.
    """
    message = input_data.get("message") if isinstance(input_data, dict) else None
    if message is None:
        message = json.dumps(input_data, sort_keys=True, default=str)

    system_prompt = agent_config.get("system_prompt")
    if system_prompt:
        return f"{system_prompt}\n\n{message}"
    return str(message)


class InferenceClient:
    """
    Async client for the inference backend

    Args:
        base_url: Backend base URL
        default_model: Model used when the agent config names none
        api_key: Optional bearer token
        cost_per_1k_tokens: Price used to compute execution cost
        http_client: Shared httpx client (a short-lived one is used if None)
    """

    def __init__(
        self,
        base_url: str,
        default_model: str,
        api_key: Optional[str] = None,
        cost_per_1k_tokens: float = 0.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.api_key = api_key
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.http_client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(
        self,
        input_data: Dict[str, Any],
        agent_config: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> InferenceResponse:
        """
        Run one completion

        Args:
            input_data: Execution input
            agent_config: Agent configuration (model, system_prompt, options)
            timeout: Request timeout in seconds

        Returns:
            InferenceResponse

        Raises:
            OperationTimeoutError: The backend did not answer in time
            TaskExecutionError: Transport error or non-2xx answer
        """
        model = agent_config.get("model", self.default_model)
        body = {
            "model": model,
            "prompt": build_prompt(input_data, agent_config),
            "stream": False,
        }
        if agent_config.get("options"):
            body["options"] = agent_config["options"]

        try:
            if self.http_client is not None:
                response = await self._post(self.http_client, body, timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, body, timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Inference backend timed out", model=model, timeout=timeout)
            raise OperationTimeoutError(
                "Inference backend timed out", details={"timeout": timeout}
            ) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("Inference backend error", model=model, status_code=status_code)
            raise TaskExecutionError(
                f"Inference backend returned {status_code}",
                details={"status_code": status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error("Inference backend unreachable", model=model, error=str(e))
            raise TaskExecutionError(f"Inference backend unreachable: {e}") from e

        tokens_used = int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        return InferenceResponse(
            output=data.get("response", ""),
            model=data.get("model", model),
            tokens_used=tokens_used,
            cost=round(tokens_used / 1000 * self.cost_per_1k_tokens, 6),
        )

    async def _post(self, client: httpx.AsyncClient, body: Dict[str, Any], timeout: Optional[float]):
        return await client.post(
            f"{self.base_url}/api/generate",
            json=body,
            headers=self._headers(),
            timeout=timeout,
        )
