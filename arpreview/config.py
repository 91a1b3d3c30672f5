"""
Settings for the preview server and the model converter.

Both settings models read overrides from ``ARPREVIEW_<FIELD>`` environment
variables, e.g. ``ARPREVIEW_PORT=9443`` or ``ARPREVIEW_MAX_TEXTURE_SIZE=2048``.
"""

import os
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "ARPREVIEW_"

DEFAULT_INPUT_PATH = "public/assets/models/CSE-front-ar-ios-safe.glb"
DEFAULT_OUTPUT_PATH = "public/assets/models/CSE-front-ar.usdz"


class _EnvSettings(BaseModel):
    model_config = ConfigDict(extra='forbid', validate_assignment=True)

    @classmethod
    def from_env(cls, **overrides: Any):
        """
        Build settings from the environment, then apply explicit overrides.

        Overrides set to None are ignored so CLI options that were not
        passed fall through to the environment or the defaults.

        Example:
            >>> ServerSettings.from_env(port=9443).port
            9443
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                values[name] = env_value

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


class ServerSettings(_EnvSettings):
    host: str = Field("", description="Interface to bind ('' binds all interfaces).")
    port: int = Field(8443, ge=0, le=65535, description="HTTPS port.")
    fallback_port: int = Field(3000, ge=0, le=65535, description="Plain HTTP port used when no certificate is available.")
    directory: str = Field("public", description="Directory served as the site root.")
    cert_path: str = Field("cert.pem", description="PEM certificate path.")
    key_path: str = Field("key.pem", description="PEM private key path.")
    common_name: str = Field("localhost", description="CN of the generated self-signed certificate.")
    key_size: int = Field(2048, ge=1024, description="RSA key size in bits.")
    validity_days: int = Field(365, ge=1, description="Certificate validity in days.")
    openssl_path: Optional[str] = Field(None, description="openssl binary (default: OPENSSL_PATH or PATH lookup).")


class ConversionSettings(_EnvSettings):
    max_texture_size: int = Field(1024, ge=1, description="Textures larger than this are downscaled (longest side, pixels).")
    include_anchoring: bool = Field(True, description="Write AR Quick Look anchoring properties on the scene prim.")
    anchoring_type: Literal['plane', 'image', 'face', 'none'] = Field('plane', description="preliminary:anchoring:type")
    plane_alignment: Literal['horizontal', 'vertical', 'any'] = Field('horizontal', description="preliminary:planeAnchoring:alignment")
    timeout: Optional[float] = Field(None, gt=0, description="Per-stage timeout in seconds (None waits forever).")
