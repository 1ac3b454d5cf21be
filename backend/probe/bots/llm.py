"""Ollama client used by bot strategies.

Every call is bounded twice: ``requests`` gets a connect/read timeout, and the
request itself runs on a worker thread whose result is awaited with a hard
deadline. Callers see either the model's text or an LLMError, never a hang.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='probe-llm')


class LLMError(Exception):
    pass


class OllamaClient:
    def __init__(self, base_url: str = 'http://localhost:11434', timeout: float = 20.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        response = self.session.post(f'{self.base_url}{path}', json=payload, timeout=timeout)
        response.raise_for_status()
        return response.json()

    def generate(self, model: str, prompt: str, options: Optional[Dict[str, Any]] = None,
                 system_prompt: Optional[str] = None, timeout: Optional[float] = None) -> str:
        deadline = timeout or self.timeout
        payload = {
            'model': model,
            'prompt': prompt,
            'stream': False,
            'options': dict(options or {}),
        }
        if system_prompt:
            payload['system'] = system_prompt

        future = _executor.submit(self._post, '/api/generate', payload, deadline)
        try:
            data = future.result(timeout=deadline)
        except FutureTimeout as exc:
            future.cancel()
            raise LLMError(f'Generation timed out after {deadline}s') from exc
        except requests.Timeout as exc:
            raise LLMError('Request timeout during generation') from exc
        except (requests.RequestException, ValueError) as exc:
            raise LLMError(f'Generation failed: {exc}') from exc

        text = (data or {}).get('response') or ''
        logger.debug('ollama model=%s chars=%d', model, len(text))
        return text

    def is_available(self) -> bool:
        try:
            response = self.session.get(f'{self.base_url}/api/tags', timeout=min(self.timeout, 5.0))
            return response.ok
        except requests.RequestException:
            return False
