# bookpress/lib/providers/errors.py
from typing import List, Tuple


class ProviderError(Exception):
    """Base for everything the provider registries raise."""


class ProviderConfigurationError(ProviderError):
    """The registry was never wired for this stage: nothing to call."""


class CapabilityError(ProviderConfigurationError):
    """No configured candidate advertises the capability the call needs."""


class ProviderCallError(ProviderError):
    """Every candidate provider failed after its own retry budget."""

    def __init__(self, stage: str, failures: List[Tuple[str, BaseException]]):
        self.stage = stage
        self.failures = failures
        last_name, last_exc = failures[-1]
        tried = ", ".join(name for name, _ in failures)
        super().__init__(f"all providers failed for stage {stage} (tried: {tried}); last error from {last_name}: {last_exc}")

    @property
    def last_error(self) -> BaseException:
        return self.failures[-1][1]
