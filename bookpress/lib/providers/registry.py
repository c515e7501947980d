# bookpress/lib/providers/registry.py
"""
Named provider registries with two-level resilience:
each candidate runs under its own retry policy, and a retryable failure of
the primary moves on to the fallback. Fatal errors stop immediately.

Registries are plain objects built at startup and handed to stage workers;
nothing here is module-level state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union

from bookpress.lib.providers.base import (
    AnalyzeRequest,
    AnalyzeResponse,
    Capability,
    ImageProvider,
    ImageRequest,
    ImageResponse,
    ImageStage,
    TextProvider,
    TextRequest,
    TextResponse,
    TextStage,
)
from bookpress.lib.providers.errors import (
    CapabilityError,
    ProviderCallError,
    ProviderConfigurationError,
)
from bookpress.lib.retry import RetryPolicy, execute, is_retryable
from bookpress.logger import get_logger

log = get_logger(__name__)

R = TypeVar("R")
Stage = Union[TextStage, ImageStage, str]


def _key(stage: Stage) -> str:
    return stage.value if hasattr(stage, "value") else str(stage)


@dataclass(frozen=True)
class StageOverride:
    primary: Optional[str] = None
    fallback: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    """
    Routing table for one registry.

    `models` is keyed by stage name, `default`, or `<provider>:<stage>` /
    `<provider>:default` for provider-specific ids.
    """
    primary: Optional[str] = None
    fallback: Optional[str] = None
    models: Mapping[str, str] = field(default_factory=dict)
    overrides: Mapping[str, StageOverride] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        overrides = {
            stage: StageOverride(**{k: v for k, v in (ov or {}).items() if k in ("primary", "fallback", "model")})
            for stage, ov in (data.get("overrides") or {}).items()
        }
        return cls(
            primary=data.get("primary") or None,
            fallback=data.get("fallback") or None,
            models=data.get("models") or {},
            overrides=overrides,
        )

    def candidates(self, stage: Stage) -> List[str]:
        ov = self.overrides.get(_key(stage), StageOverride())
        names: List[str] = []
        for name in (ov.primary or self.primary, ov.fallback or self.fallback):
            if name and name not in names:
                names.append(name)
        return names

    def resolve_model(self, stage: Stage, provider: Optional[str] = None, requested: Optional[str] = None) -> str:
        key = _key(stage)
        ov = self.overrides.get(key, StageOverride())
        chain = [requested, ov.model]
        if provider:
            chain.append(self.models.get(f"{provider}:{key}"))
        chain.append(self.models.get(key))
        if provider:
            chain.append(self.models.get(f"{provider}:default"))
        chain.append(self.models.get("default"))
        for model in chain:
            if model:
                return model
        raise ProviderConfigurationError(f"no model configured for stage {key}" + (f" on {provider}" if provider else ""))


class _Registry:
    kind = "provider"
    provider_type: type = object

    def __init__(self, config: ProviderConfig):
        self.config = config
        self._providers: Dict[str, Any] = {}

    def register(self, name: str, provider) -> None:
        if not isinstance(provider, self.provider_type):
            raise TypeError(f"{name!r} is not a {self.provider_type.__name__}")
        self._providers[name] = provider

    def names(self) -> List[str]:
        return sorted(self._providers)

    def get(self, name: str):
        return self._providers.get(name)

    def _candidates(self, stage: Stage, capability: Optional[Capability] = None) -> List[Tuple[str, Any]]:
        names = self.config.candidates(stage)
        if not names:
            raise ProviderConfigurationError(f"No {self.kind} providers configured for stage {_key(stage)}")
        resolved = []
        for name in names:
            provider = self._providers.get(name)
            if provider is None:
                raise ProviderConfigurationError(f"{self.kind} provider {name!r} is not registered")
            resolved.append((name, provider))
        if capability is not None:
            resolved = [(n, p) for n, p in resolved if p.supports(capability)]
            if not resolved:
                raise CapabilityError(
                    f"no {self.kind} provider for stage {_key(stage)} supports {capability.value} (tried: {', '.join(names)})"
                )
        return resolved

    def _dispatch(
        self,
        stage: Stage,
        requested_model: Optional[str],
        candidates: List[Tuple[str, Any]],
        invoke: Callable[[Any, str], R],
        policy_for: Callable[[Any], RetryPolicy],
    ) -> R:
        # resolve every model up front so a gap fails before anything is sent
        plan = [(name, provider, self.config.resolve_model(stage, name, requested_model)) for name, provider in candidates]
        failures: List[Tuple[str, BaseException]] = []
        for name, provider, model in plan:
            label = f"{name}:{_key(stage)}"
            try:
                response = execute(lambda: invoke(provider, model), policy_for(provider), label=label)
            except Exception as e:
                if not is_retryable(e):
                    raise
                log.warning(f"{label} exhausted retries: {e}")
                failures.append((name, e))
                continue
            if failures:
                log.info(f"{label} served stage after fallback")
            return response.model_copy(update={"provider": name, "model": model})
        raise ProviderCallError(_key(stage), failures)


class TextProviderRegistry(_Registry):
    kind = "text"
    provider_type = TextProvider

    def call(self, request: TextRequest) -> TextResponse:
        candidates = self._candidates(request.stage)
        return self._dispatch(
            request.stage,
            request.model,
            candidates,
            lambda p, model: p.call(request.model_copy(update={"model": model})),
            lambda p: p.retry_policy,
        )

    resolve = call


class ImageProviderRegistry(_Registry):
    kind = "image"
    provider_type = ImageProvider

    def generate(self, request: ImageRequest) -> ImageResponse:
        candidates = self._candidates(request.stage, Capability.GENERATE)
        return self._dispatch(
            request.stage,
            request.model,
            candidates,
            lambda p, model: p.generate_image(request.model_copy(update={"model": model})),
            lambda p: p.generate_policy,
        )

    def analyze(self, request: AnalyzeRequest) -> AnalyzeResponse:
        candidates = self._candidates(request.stage, Capability.ANALYZE)
        return self._dispatch(
            request.stage,
            request.model,
            candidates,
            lambda p, model: p.analyze_images(request.model_copy(update={"model": model})),
            lambda p: p.analyze_policy,
        )

    resolve = generate
