"""
OCR engine orchestration for slide reconstruction.

Provides:
- A failure taxonomy shared by all OCR backends
- Normalization of backend responses into one schema
- Local HTTP OCR, Vertex AI and Gemini API backends
- A per-document circuit breaker for rate-limited backends
- Priority-ordered fallback across backends

Backends are tried strictly in order and the first success wins:
1. Local OCR server (free, unlimited, optional)
2. Vertex AI Gemini (managed cloud, high limits)
3. Gemini API (API key, rate limited, last resort)
"""

import base64
import concurrent.futures
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Union

import requests
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions

from ..config import OCRConfig
from .layout import Box, TextElement

logger = logging.getLogger(__name__)


# ============================================================================
# Engines and Prompt
# ============================================================================

class OCREngine(str, Enum):
    """Supported OCR engines, in fallback priority order."""
    PADDLEOCR = "paddleocr"
    VERTEX_AI = "vertexai"
    GEMINI = "gemini"


ENGINE_PRIORITY = [OCREngine.PADDLEOCR, OCREngine.VERTEX_AI, OCREngine.GEMINI]

EXTRACTION_PROMPT = """Extract the layout of this slide image as JSON.

Return one object with two arrays:
- "textElements": standalone text blocks, each with "text", "x", "y", "width",
  "height", "fontSize" (all percentages 0-100 of the slide; fontSize relative
  to slide height), "fontWeight" ("bold" or "normal") and "fontColor" ("#RRGGBB").
- "imageRegions": visual elements (photos, charts, tables, diagrams, logos,
  shapes), each with "x", "y", "width", "height" as percentages 0-100.

Text that is part of a visual element belongs to that image region only.
Text elements and image regions must not overlap. Return only JSON."""


# ============================================================================
# Failure Taxonomy
# ============================================================================

class OCRBackendError(Exception):
    """Base class for OCR backend failures."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class BackendUnavailable(OCRBackendError):
    """Backend is not installed, not running or not configured."""


class BackendRateLimited(OCRBackendError):
    """Backend signalled a rate limit or quota condition."""


class MalformedResponse(OCRBackendError):
    """Backend answered with output that does not match the OCR schema."""


class ConfigurationMissing(OCRBackendError):
    """Backend requires configuration (API key) that is absent or rejected."""


class BackendCallFailed(OCRBackendError):
    """Backend call failed: transport error, timeout or non-success status."""


# ============================================================================
# Result Types
# ============================================================================

@dataclass
class OCRResult:
    """Unified OCR output regardless of the backend that produced it."""
    text_elements: List[TextElement] = field(default_factory=list)
    image_regions: List[Box] = field(default_factory=list)
    engine: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text_elements and not self.image_regions


class OutcomeKind(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class BackendOutcome:
    """Tagged result of one backend attempt."""
    kind: OutcomeKind
    backend: str
    result: Optional[OCRResult] = None
    error: Optional[OCRBackendError] = None


# ============================================================================
# Response Normalization
# ============================================================================

def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text.strip()


def parse_ocr_response(
    payload: Union[str, bytes, Dict[str, Any], List[Any]],
    engine: str = ""
) -> OCRResult:
    """
    Normalize a backend response into an OCRResult.

    Accepts a JSON string (optionally wrapped in a markdown code fence),
    an object with "textElements"/"imageRegions", or a bare array that is
    read as text elements with no image regions.

    Raises:
        MalformedResponse: If the payload matches neither shape
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            payload = json.loads(_strip_code_fence(payload))
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"Response is not valid JSON: {e}") from e

    if isinstance(payload, dict):
        if "textElements" not in payload and "imageRegions" not in payload:
            raise MalformedResponse("Response object has neither textElements nor imageRegions")
        texts = payload.get("textElements") or []
        regions = payload.get("imageRegions") or []
    elif isinstance(payload, list):
        # Legacy shape: text elements only
        texts, regions = payload, []
    else:
        raise MalformedResponse(f"Unexpected response type: {type(payload).__name__}")

    if not isinstance(texts, list) or not isinstance(regions, list):
        raise MalformedResponse("textElements and imageRegions must be arrays")

    return OCRResult(
        text_elements=[TextElement.from_ocr(item) for item in texts if isinstance(item, dict)],
        image_regions=[Box.from_untrusted(item) for item in regions if isinstance(item, dict)],
        engine=engine
    )


# ============================================================================
# Circuit Breaker
# ============================================================================

class CircuitBreaker:
    """
    Backends considered unavailable for the rest of one document.

    Created fresh for every document; safe to share between threads.
    """

    def __init__(self):
        self._open: Set[str] = set()
        self._lock = threading.Lock()

    def is_open(self, backend: str) -> bool:
        with self._lock:
            return backend in self._open

    def trip(self, backend: str):
        with self._lock:
            self._open.add(backend)

    def reset(self):
        with self._lock:
            self._open.clear()

    @property
    def open_backends(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._open)


# ============================================================================
# Backend Base Class
# ============================================================================

class OCRBackend(ABC):
    """One OCR service in the fallback chain."""

    name: str = ""

    @abstractmethod
    def _extract(self, image: bytes) -> OCRResult:
        """
        Run OCR on one encoded page image.

        Raises:
            OCRBackendError: A subclass describing why no result was produced
        """

    def run(self, image: bytes, breaker: CircuitBreaker) -> BackendOutcome:
        """Attempt OCR and convert the outcome into a tagged result."""
        if breaker.is_open(self.name):
            logger.info(f"[OCR] {self.name} skipped: rate limited earlier in this document")
            return self._failed(BackendRateLimited("Rate limit reached earlier in this document"))

        try:
            result = self._extract(image)
        except BackendUnavailable as e:
            logger.debug(f"[OCR] {self.name} not available, skipping: {e}")
            return BackendOutcome(OutcomeKind.SKIPPED, self.name, error=self._tag(e))
        except BackendRateLimited as e:
            breaker.trip(self.name)
            logger.warning(f"[OCR] {self.name} rate limited, disabled for this document: {e}")
            return self._failed(e)
        except MalformedResponse as e:
            logger.error(f"[OCR] {self.name} returned an unparseable response: {e}")
            return self._failed(e)
        except OCRBackendError as e:
            logger.warning(f"[OCR] {self.name} failed: {e}")
            return self._failed(e)

        result.engine = self.name
        return BackendOutcome(OutcomeKind.SUCCESS, self.name, result=result)

    def _tag(self, error: OCRBackendError) -> OCRBackendError:
        if error.backend is None:
            error.backend = self.name
        return error

    def _failed(self, error: OCRBackendError) -> BackendOutcome:
        return BackendOutcome(OutcomeKind.FAILED, self.name, error=self._tag(error))


# ============================================================================
# Helpers for Cloud Backends
# ============================================================================

_RATE_LIMIT_MARKERS = ("429", "quota", "rate limit", "resource exhausted", "resource_exhausted")
_CREDENTIAL_MARKERS = (
    "could not load the default credentials",
    "google_application_credentials",
    "unable to detect",
)
_API_KEY_MARKERS = ("api key", "api_key")


def _is_rate_limit(error: Exception) -> bool:
    if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def call_with_timeout(func: Callable[[], Any], timeout: float) -> Any:
    """
    Run a blocking call on a worker thread and wait at most `timeout` seconds.

    Raises:
        concurrent.futures.TimeoutError: If the call does not finish in time
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(func)
        return future.result(timeout=timeout)
    finally:
        # Do not wait for a call that overran its timeout
        executor.shutdown(wait=False)


def _candidate_text(response: Any) -> Optional[str]:
    try:
        return response.candidates[0].content.parts[0].text
    except (AttributeError, IndexError, ValueError):
        return None


# ============================================================================
# Local OCR Server
# ============================================================================

class LocalOCRBackend(OCRBackend):
    """
    OCR through a locally running HTTP server (e.g. a PaddleOCR wrapper).

    The server must expose GET /health and POST /ocr accepting
    {"image": <base64>} and returning at least {"textElements": [...]}.
    """

    name = OCREngine.PADDLEOCR.value

    def __init__(
        self,
        base_url: Optional[str],
        health_timeout: float = 2.0,
        ocr_timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.health_timeout = health_timeout
        self.ocr_timeout = ocr_timeout
        self.session = session or requests.Session()

    def is_alive(self) -> bool:
        """Liveness check; any error or non-success status means not running."""
        if not self.base_url:
            return False
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.health_timeout)
        except requests.exceptions.RequestException:
            return False
        return response.ok

    def _extract(self, image: bytes) -> OCRResult:
        if not self.base_url:
            raise BackendUnavailable("No local OCR server URL configured")
        if not self.is_alive():
            raise BackendUnavailable(f"No OCR server responding at {self.base_url}")

        try:
            response = self.session.post(
                f"{self.base_url}/ocr",
                json={"image": base64.b64encode(image).decode("ascii")},
                timeout=self.ocr_timeout
            )
        except requests.exceptions.Timeout as e:
            raise BackendCallFailed(f"OCR request timed out after {self.ocr_timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise BackendCallFailed(f"OCR request failed: {e}") from e

        if response.status_code == 429:
            raise BackendRateLimited(f"Local OCR server is overloaded: {response.reason}")
        if not response.ok:
            raise BackendCallFailed(f"Local OCR server answered {response.status_code} {response.reason}")

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse("Local OCR server returned a non-JSON body") from e

        if isinstance(data, dict):
            # Some servers only extract text; both fields are optional here
            data = {
                "textElements": data.get("textElements") or [],
                "imageRegions": data.get("imageRegions") or []
            }
        return parse_ocr_response(data)


# ============================================================================
# Vertex AI
# ============================================================================

class VertexAIBackend(OCRBackend):
    """
    Gemini through Vertex AI.

    Credentials come from an inline service account JSON when given,
    otherwise from Application Default Credentials. Missing credentials
    mean the backend is skipped, not that OCR failed.
    """

    name = OCREngine.VERTEX_AI.value
    SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: str = "us-central1",
        credentials_json: Optional[str] = None,
        model_name: str = "gemini-2.0-flash",
        timeout: float = 30.0,
        model: Optional[Any] = None
    ):
        self.project_id = project_id
        self.location = location
        self.credentials_json = credentials_json
        self.model_name = model_name
        self.timeout = timeout
        self._model = model

    def _resolve_credentials(self):
        """Return (credentials, project_id), preferring inline service account JSON."""
        import google.auth
        from google.oauth2 import service_account

        if self.credentials_json:
            try:
                info = json.loads(self.credentials_json)
                credentials = service_account.Credentials.from_service_account_info(
                    info, scopes=self.SCOPES
                )
                return credentials, self.project_id or info.get("project_id")
            except ValueError as e:
                logger.warning(f"Could not use inline service account credentials, trying ambient credentials: {e}")

        try:
            credentials, default_project = google.auth.default(scopes=self.SCOPES)
        except auth_exceptions.DefaultCredentialsError as e:
            raise BackendUnavailable(f"No Google Cloud credentials: {e}") from e
        return credentials, self.project_id or default_project

    def _get_model(self):
        if self._model is None:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            credentials, project_id = self._resolve_credentials()
            if not project_id:
                raise BackendUnavailable("No Vertex AI project id configured")

            vertexai.init(project=project_id, location=self.location, credentials=credentials)
            self._model = GenerativeModel(self.model_name)
            logger.info(f"Initialized Vertex AI model {self.model_name} ({project_id}, {self.location})")
        return self._model

    def _generate(self, image: bytes):
        from vertexai.generative_models import Part

        model = self._get_model()
        return model.generate_content(
            [Part.from_data(data=image, mime_type="image/jpeg"), EXTRACTION_PROMPT],
            generation_config={
                "temperature": 0.0,
                "response_mime_type": "application/json",
            }
        )

    def _extract(self, image: bytes) -> OCRResult:
        try:
            # Credential resolution and the model call share one deadline
            response = call_with_timeout(lambda: self._generate(image), self.timeout)
        except concurrent.futures.TimeoutError as e:
            raise BackendCallFailed(f"Vertex AI call timed out after {self.timeout}s") from e
        except OCRBackendError:
            raise
        except auth_exceptions.GoogleAuthError as e:
            raise BackendUnavailable(f"Vertex AI credentials unusable: {e}") from e
        except Exception as e:
            message = str(e).lower()
            if any(marker in message for marker in _CREDENTIAL_MARKERS):
                raise BackendUnavailable(f"Vertex AI not configured: {e}") from e
            if _is_rate_limit(e):
                raise BackendRateLimited(f"Vertex AI quota exceeded: {e}") from e
            raise BackendCallFailed(f"Vertex AI call failed: {e}") from e

        text = _candidate_text(response)
        if not text:
            raise MalformedResponse("Vertex AI returned no text")
        return parse_ocr_response(text)


# ============================================================================
# Gemini API
# ============================================================================

class GeminiAPIBackend(OCRBackend):
    """
    Gemini through the public API with an API key.

    Last in the chain: a missing key is a configuration failure and an
    unparseable answer still counts as a (empty) result.
    """

    name = OCREngine.GEMINI.value

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "gemini-2.0-flash",
        timeout: float = 30.0,
        model: Optional[Any] = None
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self._model = model

    def _get_model(self):
        if self._model is None:
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    def _extract(self, image: bytes) -> OCRResult:
        if not self.api_key:
            raise ConfigurationMissing("GEMINI_API_KEY is not set")

        model = self._get_model()
        try:
            response = model.generate_content(
                [
                    {"mime_type": "image/jpeg", "data": image},
                    EXTRACTION_PROMPT,
                ],
                generation_config={
                    "temperature": 0.0,
                    "response_mime_type": "application/json",
                },
                request_options={"timeout": self.timeout}
            )
        except (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated) as e:
            raise ConfigurationMissing(f"Gemini API key was rejected: {e}") from e
        except google_exceptions.DeadlineExceeded as e:
            raise BackendCallFailed(f"Gemini API call timed out after {self.timeout}s") from e
        except Exception as e:
            if _is_rate_limit(e):
                raise BackendRateLimited(f"Gemini API rate limit exceeded: {e}") from e
            if any(marker in str(e).lower() for marker in _API_KEY_MARKERS):
                raise ConfigurationMissing(f"Gemini API key is invalid: {e}") from e
            raise BackendCallFailed(f"Gemini API call failed: {e}") from e

        try:
            text = response.text
        except (AttributeError, ValueError):
            # Blocked or empty candidates
            text = _candidate_text(response) or ""

        try:
            return parse_ocr_response(text)
        except MalformedResponse as e:
            logger.error(f"[OCR] Failed to parse Gemini response ({e}): {str(text)[:200]}")
            return OCRResult()


# ============================================================================
# Orchestrator
# ============================================================================

class OCROrchestrator:
    """
    Tries OCR backends in priority order; the first success wins.

    Unavailable backends are skipped silently, failing ones are logged
    and skipped. When no backend succeeds, the error of the last backend
    in the chain is raised.
    """

    def __init__(self, backends: Sequence[OCRBackend]):
        self.backends = list(backends)

    @classmethod
    def from_config(cls, config: OCRConfig) -> 'OCROrchestrator':
        """Build the standard Local -> Vertex AI -> Gemini API chain."""
        builders = {
            OCREngine.PADDLEOCR: lambda: LocalOCRBackend(
                config.local_url,
                health_timeout=config.local_health_timeout,
                ocr_timeout=config.local_ocr_timeout
            ),
            OCREngine.VERTEX_AI: lambda: VertexAIBackend(
                project_id=config.vertex_project_id,
                location=config.vertex_location,
                credentials_json=config.vertex_credentials_json,
                model_name=config.model_name,
                timeout=config.cloud_timeout
            ),
            OCREngine.GEMINI: lambda: GeminiAPIBackend(
                api_key=config.gemini_api_key,
                model_name=config.model_name,
                timeout=config.cloud_timeout
            ),
        }
        enabled = {OCREngine(name) for name in config.enabled_engines}
        return cls([builders[engine]() for engine in ENGINE_PRIORITY if engine in enabled])

    @property
    def engine_names(self) -> List[str]:
        return [backend.name for backend in self.backends]

    def extract(self, image: bytes, breaker: CircuitBreaker) -> OCRResult:
        """
        Run OCR on one encoded page image.

        Args:
            image: Encoded page raster (JPEG)
            breaker: Circuit breaker of the document being processed

        Returns:
            OCRResult from the first backend that succeeded

        Raises:
            OCRBackendError: The last backend's failure when none succeeded
        """
        last_error: Optional[OCRBackendError] = None

        for backend in self.backends:
            outcome = backend.run(image, breaker)
            if outcome.kind is OutcomeKind.SUCCESS:
                result = outcome.result
                logger.info(
                    f"[OCR] {outcome.backend}: {len(result.text_elements)} texts, "
                    f"{len(result.image_regions)} image regions"
                )
                return result
            last_error = outcome.error

        if last_error is None:
            raise BackendUnavailable("No OCR backends configured")
        raise last_error
