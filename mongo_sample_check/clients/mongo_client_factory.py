from __future__ import annotations

import os
import logging
from typing import Any

from bson.raw_bson import RawBSONDocument
from pymongo import MongoClient
from pymongo.uri_parser import parse_uri


DEFAULT_SERVER_SELECTION_TIMEOUT_MS = 10_000


def _env_truthy(name: str) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return False
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def build_mongo_client(
    uri: str,
    *,
    role: str = "cluster",
    socket_timeout_ms: int | None = None,
    logger: logging.Logger | None = None,
) -> MongoClient[Any]:
    """
    Build a PyMongo MongoClient that hands documents back as raw BSON.

    Handles:
    - Timeouts from MONGODB_*_TIMEOUT_MS env vars when the URI does not set them
    - Falling back to `socket_timeout_ms` when neither the URI nor the env sets one
    - Reading CA bundle from REQUESTS_CA_BUNDLE / SSL_CERT_FILE env vars
    - Enabling TLS when MONGODB_FORCE_TLS is set and the URI does not say otherwise
    """
    log = logger or logging.getLogger(__name__)
    kwargs: dict[str, Any] = {"document_class": RawBSONDocument}

    parsed = parse_uri(uri)
    hosts = [f"{host}:{port}" for host, port in parsed.get("nodelist", [])]
    option_keys = {k.lower() for k in (parsed.get("options") or {}).keys()}
    log.info(
        "Building MongoClient role=%s hosts=%s",
        role,
        hosts if hosts else ["<unknown-host>"],
    )

    if "serverselectiontimeoutms" not in option_keys:
        sst = _env_int("MONGODB_SERVER_SELECTION_TIMEOUT_MS")
        kwargs["serverSelectionTimeoutMS"] = sst if sst is not None else DEFAULT_SERVER_SELECTION_TIMEOUT_MS
    ct = _env_int("MONGODB_CONNECT_TIMEOUT_MS")
    if ct is not None and "connecttimeoutms" not in option_keys:
        kwargs["connectTimeoutMS"] = ct
    if "sockettimeoutms" not in option_keys:
        st = _env_int("MONGODB_SOCKET_TIMEOUT_MS")
        if st is None:
            st = socket_timeout_ms
        if st is not None:
            kwargs["socketTimeoutMS"] = st

    # PyMongo does NOT read REQUESTS_CA_BUNDLE or SSL_CERT_FILE on its own.
    if "tlscafile" not in option_keys:
        ca_file = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
        if ca_file and os.path.isfile(ca_file):
            kwargs["tlsCAFile"] = ca_file
            log.info("Applying MongoClient tlsCAFile from environment: %s", ca_file)

    if _env_truthy("MONGODB_FORCE_TLS") and "tls" not in option_keys and "ssl" not in option_keys:
        kwargs["tls"] = True
        log.info("Enabling TLS for MongoClient role=%s because MONGODB_FORCE_TLS is set", role)

    client = MongoClient(uri, **kwargs)
    log.info(
        "MongoClient created role=%s hosts=%s with kwarg keys=%s",
        role,
        hosts if hosts else ["<unknown-host>"],
        sorted(kwargs.keys()),
    )
    return client
