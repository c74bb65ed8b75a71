"""Gestion du cycle de vie (chargement/déchargement) d'un backend de modèle."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..errors import ModelLoadFailed

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[float], None]
Loader = Callable[[ProgressHandler], Awaitable[Any]]
Unloader = Callable[[Any], Any]


class SessionState(str, Enum):
    """États d'une session de modèle."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class _ProgressReporter:
    """Relaie la progression vers un handler en garantissant une suite strictement croissante dans [0, 1]."""

    def __init__(self, handler: Optional[ProgressHandler]):
        self._handler = handler
        self._last: Optional[float] = None

    def __call__(self, fraction: float) -> None:
        if self._handler is None:
            return
        value = min(max(float(fraction), 0.0), 1.0)
        if self._last is not None and value <= self._last:
            return
        self._last = value
        try:
            self._handler(value)
        except Exception:
            logger.exception("Erreur dans le handler de progression (ignorée pour le chargement)")


class ModelLifecycleManager:
    """
    Possède la session d'un backend et sérialise ses transitions d'état.

    Un seul chargement est en cours à la fois : les appels concurrents à
    `preload` rejoignent le chargement en cours au lieu d'en lancer un second.
    La session n'est exposée qu'une fois l'état READY atteint.
    """

    def __init__(
        self,
        name: str,
        loader: Loader,
        unloader: Optional[Unloader] = None,
    ):
        """
        Initialise le gestionnaire.

        Args:
            name: Identité du backend (utilisée dans les logs et les erreurs)
            loader: Coroutine de chargement, reçoit un callback de progression
                    et retourne le handle du backend chargé
            unloader: Libération optionnelle du handle (synchrone ou asynchrone)
        """
        self.name = name
        self._loader = loader
        self._unloader = unloader
        self._state = SessionState.UNLOADED
        self._session: Any = None
        self._last_error: Optional[ModelLoadFailed] = None
        self._load_task: Optional[asyncio.Task] = None
        self._subscribers: list[_ProgressReporter] = []
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def state(self) -> SessionState:
        """État courant de la session."""
        return self._state

    @property
    def last_error(self) -> Optional[ModelLoadFailed]:
        """Erreur du dernier chargement échoué."""
        return self._last_error

    def is_ready(self) -> bool:
        """Requête non bloquante : la session est-elle prête ?"""
        return self._state is SessionState.READY

    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        """
        Charge le backend s'il ne l'est pas déjà.

        Idempotent : si la session est prête, signale immédiatement 1.0.
        Après un échec, un nouvel appel repart de zéro.

        Raises:
            ModelLoadFailed: Si le chargement échoue
        """
        reporter = _ProgressReporter(progress_handler)

        async with self._lock:
            if self._state is SessionState.READY:
                reporter(1.0)
                return

            if self._load_task is None:
                logger.info(f"Chargement du modèle {self.name}...")
                self._state = SessionState.LOADING
                self._last_error = None
                self._subscribers = []
                self._load_task = asyncio.ensure_future(self._run_load())
            else:
                logger.debug(f"Chargement de {self.name} déjà en cours, attente")

            self._subscribers.append(reporter)
            task = self._load_task

        # shield : l'annulation d'un appelant ne doit pas interrompre le chargement partagé
        error = await asyncio.shield(task)
        if error is not None:
            raise ModelLoadFailed(error.message, cause=error.cause) from error.cause

        reporter(1.0)

    async def unload(self) -> None:
        """Repasse la session à l'état UNLOADED et libère les ressources du backend."""
        async with self._lock:
            if self._load_task is not None:
                await asyncio.shield(self._load_task)

            if self._state is SessionState.READY and self._unloader is not None:
                result = self._unloader(self._session)
                if inspect.isawaitable(result):
                    await result

            if self._state is not SessionState.UNLOADED:
                logger.info(f"Modèle {self.name} déchargé")

            self._session = None
            self._state = SessionState.UNLOADED

    def require_session(self) -> Any:
        """
        Retourne le handle du backend chargé.

        Raises:
            ModelLoadFailed: Si la session n'est pas prête
        """
        if self._state is not SessionState.READY:
            raise ModelLoadFailed(
                f"Modèle {self.name} non disponible (état: {self._state.value})",
                cause=self._last_error,
            )
        return self._session

    async def ensure_ready(self) -> Any:
        """
        Retourne la session, en la chargeant à la demande depuis UNLOADED.

        Un état FAILED n'est jamais rechargé implicitement : seul un appel
        explicite à `preload` relance le chargement.
        """
        if self._state is SessionState.FAILED:
            raise ModelLoadFailed(
                f"Le chargement du modèle {self.name} a échoué, rechargement explicite requis",
                cause=self._last_error,
            )
        if self._state is not SessionState.READY:
            await self.preload()
        return self.require_session()

    def _dispatch_progress(self, fraction: float) -> None:
        for subscriber in list(self._subscribers):
            subscriber(fraction)

    async def _run_load(self) -> Optional[ModelLoadFailed]:
        """Exécute le chargement et effectue la transition finale (READY ou FAILED)."""
        self.load_count += 1
        try:
            session = await self._loader(self._dispatch_progress)
        except ModelLoadFailed as e:
            error = e
        except Exception as e:
            error = ModelLoadFailed(f"Échec du chargement du modèle {self.name}: {e}", cause=e)
        except asyncio.CancelledError:
            self._load_task = None
            self._state = SessionState.FAILED
            self._last_error = ModelLoadFailed(f"Chargement du modèle {self.name} annulé")
            raise
        else:
            self._session = session
            self._state = SessionState.READY
            self._load_task = None
            logger.info(f"Modèle {self.name} prêt")
            return None

        self._session = None
        self._state = SessionState.FAILED
        self._last_error = error
        self._load_task = None
        logger.error(f"Échec du chargement de {self.name}: {error}")
        return error
