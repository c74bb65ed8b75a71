"""Politique de timeout et de retry appliquée aux appels des fournisseurs."""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .config import OrchestrationConfig
from .errors import InferenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry borné sur InferenceError uniquement.

    ModelLoadFailed et ExtractionParseError traversent la politique sans
    nouvelle tentative. Un dépassement de délai est converti en InferenceError
    (timed_out=True) ; la tentative suivante ne démarre qu'après l'annulation
    de la précédente.

    Le délai couvre tout l'appel, y compris un chargement paresseux du modèle :
    précharger les fournisseurs avant le traitement (OrchestrationEngine.preload).
    """

    max_retries: int = 2
    timeout_seconds: Optional[float] = 30.0
    delay_seconds: float = 0.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_config(cls, config: OrchestrationConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            timeout_seconds=config.timeout_seconds,
            delay_seconds=config.retry_delay_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    async def run(self, call: Callable[[], Awaitable[T]], label: str = "appel modèle") -> T:
        """
        Exécute `call` avec timeout et retries.

        Args:
            call: Fabrique de coroutine, rappelée à chaque tentative
            label: Libellé pour les logs et messages d'erreur

        Returns:
            Le résultat de la première tentative réussie

        Raises:
            InferenceError: Après épuisement des tentatives
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(InferenceError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            before_sleep=functools.partial(_log_retry, label, self.max_attempts),
            reraise=True,
        )

        try:
            return await retrying(self._call_with_timeout, call, label)
        except InferenceError as e:
            logger.error(
                f"[retry] {label} abandon après {self.max_attempts} tentative(s): {e}"
            )
            raise InferenceError(
                f"{label}: échec après {self.max_attempts} tentative(s): {e.message}",
                cause=e.cause,
                timed_out=e.timed_out,
            ) from e

    async def _call_with_timeout(self, call: Callable[[], Awaitable[T]], label: str) -> T:
        if self.timeout_seconds is None:
            return await call()
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise InferenceError(
                f"{label}: délai de {self.timeout_seconds}s dépassé",
                cause=e,
                timed_out=True,
            ) from e


def _log_retry(label: str, max_attempts: int, retry_state: RetryCallState) -> None:
    err = retry_state.outcome.exception()
    logger.warning(
        f"[retry] {label} tentative={retry_state.attempt_number}/{max_attempts} erreur={err}"
    )
