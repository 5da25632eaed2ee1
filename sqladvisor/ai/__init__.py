"""
AI Module - query optimization recommendations

Modules:
- fragments: recommendation fragments and the wire-level stream record
- prompts: request model and prompt construction
- cancellation: cooperative cancellation token
- ollama_client: streaming Ollama protocol client
- on_device: progress-callback model adapter
- single_flight: one-request-at-a-time gate
- recommendation_service: aggregator, backend selection, accumulated results
"""

from sqladvisor.ai.fragments import (
    FragmentKind,
    RecommendationFragment,
    StreamLine,
)

from sqladvisor.ai.prompts import (
    RecommendationRequest,
    build_prompt,
)

from sqladvisor.ai.cancellation import CancellationToken

from sqladvisor.ai.backend import RecommendationBackend

from sqladvisor.ai.ollama_client import (
    OllamaRecommendationClient,
    get_shared_http_client,
    close_shared_http_client,
)

from sqladvisor.ai.on_device import (
    OnDeviceLanguageModel,
    OnDeviceRecommendationClient,
    ProgressChannel,
)

from sqladvisor.ai.single_flight import SingleFlightGate

from sqladvisor.ai.recommendation_service import (
    RecommendationService,
    RecommendationResult,
    select_backend,
    get_recommendation_service,
    reset_recommendation_service,
)

__all__ = [
    # Fragments
    'FragmentKind',
    'RecommendationFragment',
    'StreamLine',

    # Prompts
    'RecommendationRequest',
    'build_prompt',

    # Cancellation
    'CancellationToken',

    # Backends
    'RecommendationBackend',
    'OllamaRecommendationClient',
    'get_shared_http_client',
    'close_shared_http_client',
    'OnDeviceLanguageModel',
    'OnDeviceRecommendationClient',
    'ProgressChannel',

    # Service
    'SingleFlightGate',
    'RecommendationService',
    'RecommendationResult',
    'select_backend',
    'get_recommendation_service',
    'reset_recommendation_service',
]
