"""
Configuration for a mirror run.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Pattern

from ..utils.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_DELAY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_RETRY,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    RESOURCE_TYPE_ALL,
    RESOURCE_TYPES,
    SUPPORTED_BROWSERS,
)


@dataclass
class LoginConfig:
    """
    Form login performed by the browser renderer before the first page.

    `form_fields` maps a credential name to the CSS selector of its input,
    e.g. {"username": "#email", "password": "#password"}; `credentials`
    maps the same names to their values.
    """

    login_url: str
    form_fields: Dict[str, str] = field(default_factory=dict)
    credentials: Dict[str, str] = field(default_factory=dict)
    submit_selector: Optional[str] = None
    error_selector: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoginConfig":
        """
        Build a login config from the web panel's camelCase JSON object.

        Raises:
            ValueError: If loginUrl is missing or not an http(s) URL
            TypeError: If formFields or credentials are not objects
        """
        if not isinstance(data, dict):
            raise TypeError("login must be an object")

        login_url = str(data.get('loginUrl') or '').strip()
        if not login_url.startswith(('http://', 'https://')):
            raise ValueError(f"Invalid login URL: {login_url!r}")

        form_fields = data.get('formFields') or {}
        credentials = data.get('credentials') or {}
        if not isinstance(form_fields, dict) or not isinstance(credentials, dict):
            raise TypeError("formFields and credentials must be objects")

        return cls(
            login_url=login_url,
            form_fields={str(k): str(v) for k, v in form_fields.items()},
            credentials={str(k): str(v) for k, v in credentials.items()},
            submit_selector=data.get('submitSelector') or None,
            error_selector=data.get('errorSelector') or None
        )


@dataclass
class MirrorConfig:
    """All tunables of a mirror run."""

    output_dir: str = DEFAULT_OUTPUT_DIR
    recursive: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    resource_type: str = RESOURCE_TYPE_ALL
    filter_regex: Optional[str] = None

    # Fetch scheduler
    concurrency: int = DEFAULT_CONCURRENCY
    delay: float = DEFAULT_DELAY
    retry: int = DEFAULT_RETRY
    retry_delay: float = DEFAULT_RETRY_DELAY
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    cookie: str = ""
    gzip: bool = True
    proxy: Optional[str] = None
    speed_limit: int = 0
    max_file_size: int = 0
    verify_ssl: bool = True
    follow_redirects: bool = True
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    # Page rendering
    dynamic: bool = False
    headless: bool = True
    browser: str = "chromium"
    page_timeout: int = DEFAULT_PAGE_TIMEOUT
    login: Optional[LoginConfig] = None

    # Output
    keep_original_urls: bool = False
    sitemap: bool = False

    # Keys accepted from the web panel's JSON payload
    _JSON_KEYS = {
        'output': 'output_dir',
        'outputDir': 'output_dir',
        'recursive': 'recursive',
        'maxDepth': 'max_depth',
        'type': 'resource_type',
        'filter': 'filter_regex',
        'concurrency': 'concurrency',
        'delay': 'delay',
        'retry': 'retry',
        'retryDelay': 'retry_delay',
        'timeout': 'timeout',
        'userAgent': 'user_agent',
        'cookie': 'cookie',
        'proxy': 'proxy',
        'speedLimit': 'speed_limit',
        'maxFileSize': 'max_file_size',
        'gzip': 'gzip',
        'verifySsl': 'verify_ssl',
        'followRedirects': 'follow_redirects',
        'maxRedirects': 'max_redirects',
        'dynamic': 'dynamic',
        'headless': 'headless',
        'browser': 'browser',
        'pageTimeout': 'page_timeout',
        'login': 'login',
        'keepOriginalUrls': 'keep_original_urls',
        'sitemap': 'sitemap',
    }

    @property
    def compiled_filter(self) -> Optional[Pattern]:
        """The user regex, compiled, or None if not configured."""
        if not self.filter_regex:
            return None
        return re.compile(self.filter_regex)

    def validate(self) -> "MirrorConfig":
        """
        Check value ranges.

        Returns:
            self, for chaining

        Raises:
            ValueError: If any value is out of range
        """
        if self.resource_type != RESOURCE_TYPE_ALL and self.resource_type not in RESOURCE_TYPES:
            allowed = ', '.join([RESOURCE_TYPE_ALL, *RESOURCE_TYPES])
            raise ValueError(f"Unknown resource type '{self.resource_type}' (expected one of: {allowed})")
        if self.browser not in SUPPORTED_BROWSERS:
            raise ValueError(f"Unknown browser '{self.browser}'")
        if self.max_depth < 0:
            raise ValueError("Max depth must be 0 or more")
        if self.concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        if self.retry < 1:
            raise ValueError("Retry count must be at least 1")
        if self.delay < 0 or self.retry_delay < 0:
            raise ValueError("Delays cannot be negative")
        if self.timeout <= 0 or self.page_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.max_redirects < 0:
            raise ValueError("Max redirects cannot be negative")
        if self.speed_limit < 0 or self.max_file_size < 0:
            raise ValueError("Limits cannot be negative")
        if self.filter_regex:
            try:
                re.compile(self.filter_regex)
            except re.error as e:
                raise ValueError(f"Invalid filter regex: {e}") from e
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MirrorConfig":
        """
        Build a config from a JSON payload.

        Unknown keys are ignored. A list given for 'type' uses its first
        element. 'login' is an object with loginUrl, formFields,
        credentials, submitSelector and errorSelector; it turns on browser
        rendering.
        """
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = cls._JSON_KEYS.get(key)
            if name is None or value is None or value == '':
                continue
            if name == 'resource_type' and isinstance(value, list):
                value = value[0] if value else RESOURCE_TYPE_ALL
            elif name == 'login':
                value = LoginConfig.from_dict(value)
            kwargs[name] = value

        if kwargs.get('login'):
            kwargs['dynamic'] = True

        config = cls(**kwargs)
        for name in ('max_depth', 'concurrency', 'retry', 'speed_limit', 'max_file_size',
                     'max_redirects', 'page_timeout'):
            setattr(config, name, int(getattr(config, name)))
        for name in ('delay', 'retry_delay', 'timeout'):
            setattr(config, name, float(getattr(config, name)))
        return config.validate()
