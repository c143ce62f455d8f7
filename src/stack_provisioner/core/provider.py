"""AWS Provider - Session and client configuration for the target account."""

import threading
from functools import cached_property
from typing import Any, Self

import boto3
from botocore.config import Config
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class AwsProvider(BaseModel):
    """Connection configuration for an AWS account and region.

    Credentials come from the standard boto3 chain (environment, shared
    config, instance role), optionally narrowed to a named profile. For tests
    or embedding, use ``from_session`` to inject a session.

    Examples:
        # Default credential chain
        provider = AwsProvider(region="us-east-1")

        # Injected session (e.g. stubbed clients)
        provider = AwsProvider.from_session(session, region="us-east-1")
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    timeout: float = Field(default=60.0, gt=0)

    # Injected session (for embedding / testing)
    _injected_session: Any = None
    _clients: dict[str, Any] = PrivateAttr(default_factory=dict)
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @classmethod
    def from_session(cls, session: Any, *, region: str | None = None, timeout: float = 60.0) -> Self:
        """Create a provider with an injected boto3 session.

        Args:
            session: A pre-configured ``boto3.session.Session`` (or a stand-in
                exposing ``client(service_name, **kwargs)``)
            region: Region override
            timeout: Per-call timeout in seconds
        """
        provider = cls(region=region, timeout=timeout)
        provider._injected_session = session
        return provider

    @cached_property
    def session(self) -> boto3.session.Session:
        """Get the boto3 session."""
        if self._injected_session is not None:
            return self._injected_session
        return boto3.session.Session(profile_name=self.profile, region_name=self.region)

    @property
    def region_name(self) -> str:
        region = self.region or getattr(self.session, "region_name", None)
        if not region:
            raise ValueError("No AWS region configured (set provider.region or AWS_REGION)")
        return region

    def client(self, service: str) -> Any:
        """Return a cached client for *service*, bounded by the provider timeout.

        Clients are created under a lock; once created they are safe to share
        between worker threads.
        """
        with self._lock:
            client = self._clients.get(service)
            if client is None:
                config = Config(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"max_attempts": 3, "mode": "standard"},
                )
                client = self.session.client(
                    service,
                    region_name=self.region_name,
                    endpoint_url=self.endpoint_url,
                    config=config,
                )
                self._clients[service] = client
            return client

    @cached_property
    def account_id(self) -> str:
        """Account id of the caller (used to derive execution ARNs)."""
        return self.client("sts").get_caller_identity()["Account"]
