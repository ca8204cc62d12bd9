# idcard/config.py
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import ConfigurationError
from .files import FILE_POLICIES, FilePolicy, get_policy
from .form_data_builder import FlowTopology

@dataclass(frozen=True)
class Settings:
    api_base_url: str
    institution_code: str
    institution_name: str
    email_domain: str
    topology: FlowTopology
    file_policy: FilePolicy
    http_timeout: float
    storage_secret: str
    port: int

def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Reads the IDCARD_* environment. IDCARD_FILE_POLICY has no default: the
    deployment must choose between the staged (5 MB) and the legacy inline
    (1 MB image-only photo) policy.
    """
    env = os.environ if environ is None else environ

    policy_name = env.get('IDCARD_FILE_POLICY', '').strip()
    if not policy_name:
        raise ConfigurationError(
            f"IDCARD_FILE_POLICY is not set. Choose one of: {', '.join(FILE_POLICIES)}"
        )
    try:
        file_policy = get_policy(policy_name)
    except ValueError as e:
        raise ConfigurationError(f"IDCARD_FILE_POLICY: {e}") from e

    topology_name = env.get('IDCARD_FLOW_TOPOLOGY', FlowTopology.STAGED.value).strip().lower()
    try:
        topology = FlowTopology(topology_name)
    except ValueError:
        raise ConfigurationError(f"Unknown IDCARD_FLOW_TOPOLOGY '{topology_name}'.") from None

    try:
        http_timeout = float(env.get('IDCARD_HTTP_TIMEOUT', '15'))
        port = int(env.get('PORT', '8080'))
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    return Settings(
        api_base_url=env.get('IDCARD_API_BASE_URL', 'http://localhost:5000/api'),
        institution_code=env.get('IDCARD_INSTITUTION_CODE', 'NITT'),
        institution_name=env.get('IDCARD_INSTITUTION_NAME', 'National Institute of Technology, Tiruchirappalli'),
        email_domain=env.get('IDCARD_EMAIL_DOMAIN', 'nitt.edu'),
        topology=topology,
        file_policy=file_policy,
        http_timeout=http_timeout,
        storage_secret=env.get('STORAGE_SECRET', 'a_very_secure_secret_key_for_local_dev'),
        port=port,
    )
