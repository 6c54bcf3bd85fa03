# Agent inference orchestration
# services/inference_orchestrator.py
"""
Entry point of the gateway core.

One call to ``respond`` validates the request, resolves swarm, agent and
credential, assembles the prompt, and opens the provider stream under the
handshake timeout. It either raises ``InferenceError`` (the caller renders
JSON) or returns an ``InferenceStream`` whose events are already
normalized. Every request that reaches this point produces exactly one
usage record.
"""

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Optional, Tuple
import httpx
import structlog

from middleware.metrics import MetricsCollector
from models.agents import AgentConfig, HumanMode, Swarm
from models.provider import ProviderRequestParams
from models.requests import AgentRespondRequest
from providers.base import ProviderAdapter
from providers.registry import get_adapter
from services.prompt_assembler import assemble_system_prompt, build_conversation, build_history
from services.provider_client import ProviderClient
from services.store import ConversationStore, IdentityStore
from services.stream_normalizer import StreamNormalizer
from services.token_estimator import estimate_input_tokens
from services.usage_recorder import UsageRecorder, UsageSession
from utils.config import settings
from utils.errors import ErrorKind, InferenceError, internal_error, validation_error
from utils.security import MessageSanitizer, is_valid_uuid


logger = structlog.get_logger()


class OrchestratorState(str, Enum):
    VALIDATING = "validating"
    RESOLVING = "resolving"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass
class InferenceStream:
    """
    An open, already-validated response stream for one agent turn.

    The owner must call ``aclose`` once the response is over, whether or
    not ``events`` was ever iterated. It finalizes the usage record and
    releases the upstream connection.
    """
    agent: AgentConfig
    request_id: str
    provider: str
    model: str
    events: AsyncGenerator[bytes, None]
    session: UsageSession = field(repr=False)
    response: httpx.Response = field(repr=False)

    async def aclose(self) -> None:
        await self.events.aclose()
        if not self.session.finalized:
            self.session.fail(
                InferenceError(ErrorKind.STREAM_INTERRUPTED, "Client disconnected before streaming began"),
                billable=True
            )
        await self.response.aclose()


class InferenceOrchestrator:
    """
    Wires validation, resolution, prompt assembly, dispatch and streaming.
    Holds no per-request state; one instance serves the whole app.
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        conversation_store: ConversationStore,
        recorder: UsageRecorder,
        provider_client: ProviderClient,
        rng: Optional[random.Random] = None,
        sanitizer: Optional[MessageSanitizer] = None
    ):
        self.identity_store = identity_store
        self.conversation_store = conversation_store
        self.recorder = recorder
        self.provider_client = provider_client
        self.rng = rng or random.Random(settings.agent_selection_seed)
        self.sanitizer = sanitizer or MessageSanitizer()
        self.logger = logger.bind(service="InferenceOrchestrator")

    def select_agent(self, swarm: Swarm, agent_id: Optional[str] = None) -> AgentConfig:
        """Explicit member when ``agent_id`` is given, else a uniform pick"""

        if agent_id:
            agent = swarm.find_agent(agent_id)
            if agent is None:
                raise validation_error("Specified agent not in swarm")
            return agent

        return self.rng.choice(swarm.agents)

    async def respond(
        self,
        user_id: str,
        request: AgentRespondRequest,
        request_id: Optional[str] = None
    ) -> InferenceStream:
        request_id = request_id or str(uuid.uuid4())
        log = self.logger.bind(request_id=request_id, user_id=user_id)

        session = UsageSession(
            self.recorder,
            user_id,
            request_metadata={
                "human_mode": request.human_mode,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "request_id": request_id,
            }
        )

        state = self._transition(log, OrchestratorState.VALIDATING)
        try:
            message, human_mode = self._validate(request)
            session.update(swarm_id=request.swarm_id)

            state = self._transition(log, OrchestratorState.RESOLVING)
            agent, adapter, api_key, params = await self._resolve(
                request, message, human_mode, session, log
            )

            state = self._transition(log, OrchestratorState.DISPATCHING)
            response = await self.provider_client.open_stream(adapter, api_key, params)

        except InferenceError as e:
            self._fail(session, e, state, log)
            raise

        except asyncio.CancelledError:
            self._fail(
                session,
                InferenceError(ErrorKind.STREAM_INTERRUPTED, "Client disconnected before the response started"),
                state,
                log
            )
            raise

        except Exception as e:
            error = internal_error(e)
            log.error("Unexpected orchestration failure",
                      state=state.value,
                      error=str(e),
                      error_type=type(e).__name__,
                      exc_info=True)
            self._fail(session, error, state, log)
            raise error from e

        self._transition(log, OrchestratorState.STREAMING, provider=adapter.name, model=params.model)
        return InferenceStream(
            agent=agent,
            request_id=request_id,
            provider=adapter.name,
            model=params.model,
            events=self._relay(session, adapter, response, log),
            session=session,
            response=response
        )

    def _validate(self, request: AgentRespondRequest) -> Tuple[str, Optional[HumanMode]]:
        if not request.swarm_id:
            raise validation_error("swarm_id is required")
        if not is_valid_uuid(request.swarm_id):
            raise validation_error("Invalid swarm_id format")
        if request.agent_id and not is_valid_uuid(request.agent_id):
            raise validation_error("Invalid agent_id format")

        if not request.message or not isinstance(request.message, str):
            raise validation_error("message is required")
        message = self.sanitizer.sanitize(request.message)
        if not message:
            raise validation_error("Message cannot be empty after sanitization")

        human_mode = None
        if request.human_mode is not None:
            try:
                human_mode = HumanMode(request.human_mode)
            except ValueError:
                raise validation_error("human_mode must be one of: observe, collaborate, direct") from None

        if not 1 <= request.max_tokens <= settings.max_tokens_ceiling:
            raise validation_error(f"max_tokens must be between 1 and {settings.max_tokens_ceiling}")
        if not 0.0 <= request.temperature <= 2.0:
            raise validation_error("temperature must be between 0 and 2")

        return message, human_mode

    async def _resolve(
        self,
        request: AgentRespondRequest,
        message: str,
        human_mode: Optional[HumanMode],
        session: UsageSession,
        log
    ) -> Tuple[AgentConfig, ProviderAdapter, str, ProviderRequestParams]:
        swarm = await self.identity_store.get_swarm(request.swarm_id)
        if swarm is None:
            raise InferenceError(ErrorKind.NOT_FOUND, "Swarm not found")
        if not swarm.agents:
            raise validation_error("No agents in swarm")

        agent = self.select_agent(swarm, request.agent_id)
        session.update(agent_id=agent.id, provider=agent.provider_name)
        log.info("Agent selected",
                 swarm_id=swarm.id,
                 agent_id=agent.id,
                 provider=agent.provider_name,
                 explicit=bool(request.agent_id))

        adapter = get_adapter(agent.provider_name)
        model = agent.model or adapter.default_model
        session.update(model=model)

        api_key = await self.identity_store.get_api_key(agent.user_id, adapter.name)
        if not api_key:
            raise InferenceError(
                ErrorKind.MISSING_API_KEY,
                f"No API key configured for {agent.framework}. "
                "Please add your API key in Settings > Integrations."
            )

        context_blocks, recent_messages = await asyncio.gather(
            self.conversation_store.get_context_blocks(swarm.id),
            self.conversation_store.get_recent_messages(swarm.id, settings.history_fetch_limit)
        )

        system_prompt = assemble_system_prompt(agent, context_blocks, swarm.task, human_mode)
        history = build_history(recent_messages, swarm.agent_names())
        conversation = build_conversation(history, message)

        params = ProviderRequestParams(
            model=model,
            system_prompt=system_prompt,
            messages=conversation,
            max_tokens=request.max_tokens,
            temperature=request.temperature
        )

        session.update(
            input_tokens=estimate_input_tokens(system_prompt, conversation),
            request_metadata={
                **session.record.request_metadata,
                "message_count": len(conversation),
                "history_length": len(history),
                "context_blocks": len(context_blocks),
            }
        )
        return agent, adapter, api_key, params

    async def _relay(
        self,
        session: UsageSession,
        adapter: ProviderAdapter,
        response: httpx.Response,
        log
    ) -> AsyncGenerator[bytes, None]:
        normalizer = StreamNormalizer(adapter, on_complete=session.succeed)
        MetricsCollector.stream_opened(adapter.name)

        try:
            async for event in normalizer.normalize(response.aiter_bytes()):
                yield event

            self._transition(log, OrchestratorState.DONE, output_tokens=normalizer.output_tokens)

        except (asyncio.CancelledError, GeneratorExit):
            if not session.finalized:
                log.info("Client disconnected mid-stream", output_tokens=normalizer.output_tokens)
                session.fail(
                    InferenceError(ErrorKind.STREAM_INTERRUPTED, "Client disconnected during streaming"),
                    output_tokens=normalizer.output_tokens,
                    billable=True
                )
            raise

        except httpx.HTTPError as e:
            # Headers are already sent: stop emitting, no JSON downgrade
            error = InferenceError(
                ErrorKind.INTERNAL_ERROR,
                f"{adapter.name} stream ended unexpectedly",
                detail=f"{type(e).__name__}: {e}"
            )
            self._fail(session, error, OrchestratorState.STREAMING, log,
                       output_tokens=normalizer.output_tokens, billable=True)

        except Exception as e:
            self._fail(session, internal_error(e), OrchestratorState.STREAMING, log,
                       output_tokens=normalizer.output_tokens, billable=True)
            raise

        finally:
            await response.aclose()
            MetricsCollector.stream_closed(adapter.name)

    def _fail(
        self,
        session: UsageSession,
        error: InferenceError,
        state: OrchestratorState,
        log,
        output_tokens: int = 0,
        billable: bool = False
    ) -> None:
        log.warning("Request failed",
                    state=state.value,
                    code=error.code,
                    error=error.message,
                    detail=error.detail)
        self._transition(log, OrchestratorState.FAILED, code=error.code)
        session.fail(error, output_tokens=output_tokens, billable=billable)

    @staticmethod
    def _transition(log, state: OrchestratorState, **fields: Any) -> OrchestratorState:
        log.debug("State transition", state=state.value, **fields)
        return state
