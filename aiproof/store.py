"""
Content-addressed store adapters.

Every backend exposes two coroutines, ``put(bytes) -> cid`` and
``get(cid) -> bytes``, and raises ``StoreError`` on any failure. Objects
are only ever added and read; nothing is overwritten in place.
"""

import asyncio
import base64
import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_GATEWAYS = [
    "http://127.0.0.1:8080/ipfs",
    "https://ipfs.io/ipfs",
    "https://dweb.link/ipfs",
]

# CIDv1, raw codec, sha2-256 multihash of 32 bytes
_CID_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])


class StoreError(Exception):
    """A put or get against the content store failed or timed out."""

    def __init__(self, message: str, backend: Optional[str] = None,
                 cid: Optional[str] = None, timeout: bool = False):
        super().__init__(message)
        self.backend = backend
        self.cid = cid
        self.timeout = timeout


def compute_cid(data: bytes) -> str:
    """
    Content identifier for ``data``.

    Produces the same string an IPFS node returns for a single raw block
    added with ``cid-version=1``: multibase ``b`` + lowercase base32.
    """
    raw = _CID_PREFIX + hashlib.sha256(data).digest()
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


async def bounded(aw: Awaitable[T], timeout: Optional[float], what: str,
                  backend: Optional[str] = None) -> T:
    """Await ``aw`` with a deadline, turning expiry into ``StoreError``."""
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError as e:
        raise StoreError(f"{what} timed out after {timeout}s", backend=backend, timeout=True) from e


class ContentStore:
    name = "base"

    async def put(self, data: bytes) -> str:
        raise NotImplementedError

    async def get(self, cid: str) -> bytes:
        raise NotImplementedError


class MemoryContentStore(ContentStore):
    """Process-local store. Identical bytes always map to the same cid."""
    name = "memory"

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None):
        self._blobs: Dict[str, bytes] = dict(blobs or {})
        self._lock = threading.Lock()

    async def put(self, data: bytes) -> str:
        cid = compute_cid(data)
        with self._lock:
            self._blobs.setdefault(cid, bytes(data))
        return cid

    async def get(self, cid: str) -> bytes:
        with self._lock:
            data = self._blobs.get(cid)
        if data is None:
            raise StoreError(f"not found: {cid}", backend=self.name, cid=cid)
        return data

    def __len__(self) -> int:
        return len(self._blobs)


class IpfsContentStore(ContentStore):
    """
    IPFS node over its HTTP API, with read fallback across gateways.

    Blocking ``requests`` calls run in a worker thread so the event loop
    is never held up by a slow node. Each read request gets
    ``read_timeout`` (a quarter of ``timeout`` unless given) so a hung
    node still leaves time for the gateways inside the caller's deadline.
    """
    name = "ipfs"

    def __init__(
        self,
        api_url: str,
        gateways: Sequence[str] = (),
        timeout: float = 30.0,
        retries: int = 2,
        session: Optional[requests.Session] = None,
        read_timeout: Optional[float] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateways = [g.rstrip("/") for g in gateways] or list(DEFAULT_GATEWAYS)
        self.timeout = timeout
        self.read_timeout = read_timeout if read_timeout is not None else timeout / 4
        self.retries = retries
        self._session = session or requests.Session()

    async def put(self, data: bytes) -> str:
        return await asyncio.to_thread(self._add, data)

    async def get(self, cid: str) -> bytes:
        return (await self.get_traced(cid)).data

    async def get_traced(self, cid: str) -> "GetResult":
        return await asyncio.to_thread(self._fetch, cid)

    def _add(self, data: bytes) -> str:
        url = f"{self.api_url}/api/v0/add"
        try:
            resp = self._session.post(
                url,
                params={"cid-version": "1", "raw-leaves": "true", "pin": "true"},
                files={"file": data},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            cid = resp.json()["Hash"]
        except requests.Timeout as e:
            raise StoreError(f"ipfs add timed out: {e}", backend=self.name, timeout=True) from e
        except (requests.RequestException, ValueError, KeyError) as e:
            raise StoreError(f"ipfs add failed: {e}", backend=self.name) from e
        logger.debug("ipfs add ok", extra={"extra_fields": {"cid": cid, "bytes": len(data)}})
        return cid

    def _fetch(self, cid: str) -> "GetResult":
        attempts: List[Attempt] = []
        try:
            resp = self._session.post(
                f"{self.api_url}/api/v0/cat", params={"arg": cid}, timeout=self.read_timeout
            )
            resp.raise_for_status()
            attempts.append(Attempt(backend="ipfs-api", ok=True, value=cid))
            return GetResult(data=resp.content, attempts=attempts)
        except requests.RequestException as e:
            attempts.append(Attempt(backend="ipfs-api", ok=False, reason=str(e)))

        for gw in self.gateways:
            for attempt in range(self.retries + 1):
                try:
                    resp = self._session.get(f"{gw}/{cid}", timeout=self.read_timeout)
                except requests.RequestException as e:
                    attempts.append(Attempt(backend=gw, ok=False, reason=type(e).__name__))
                    if attempt < self.retries:
                        time.sleep(0.25 * (attempt + 1))
                        continue
                    break
                if resp.status_code != 200:
                    # hard status: move on to the next gateway
                    attempts.append(Attempt(backend=gw, ok=False, reason=f"HTTP {resp.status_code}"))
                    break
                attempts.append(Attempt(backend=gw, ok=True, value=cid))
                logger.warning(
                    "ipfs read served by gateway",
                    extra={"extra_fields": {"cid": cid, "gateway": gw}},
                )
                return GetResult(data=resp.content, attempts=attempts, fallbacks=[f"gateway_fallback:{gw}"])

        reasons = " | ".join(f"{a.backend}: {a.reason}" for a in attempts)
        raise StoreError(f"all gateways failed for {cid}: {reasons}", backend=self.name, cid=cid)


class S3ContentStore(ContentStore):
    """
    Objects in an S3 bucket keyed by their content-derived cid.

    boto3 is imported on first use.
    """
    name = "s3"

    def __init__(self, bucket: str, prefix: str = "aiproof/objects/", region: Optional[str] = None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.region = region
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise StoreError("boto3 required for the s3 store backend", backend=self.name) from e
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    async def put(self, data: bytes) -> str:
        return await asyncio.to_thread(self._put, data)

    async def get(self, cid: str) -> bytes:
        return await asyncio.to_thread(self._get, cid)

    def _put(self, data: bytes) -> str:
        cid = compute_cid(data)
        s3 = self._get_client()
        try:
            s3.put_object(
                Bucket=self.bucket,
                Key=f"{self.prefix}{cid}",
                Body=data,
                ContentType="application/octet-stream",
            )
        except Exception as e:
            raise StoreError(f"s3 put failed: {e}", backend=self.name, cid=cid) from e
        return cid

    def _get(self, cid: str) -> bytes:
        s3 = self._get_client()
        try:
            obj = s3.get_object(Bucket=self.bucket, Key=f"{self.prefix}{cid}")
            return obj["Body"].read()
        except Exception as e:
            raise StoreError(f"s3 get failed: {e}", backend=self.name, cid=cid) from e


@dataclass
class Attempt:
    """Outcome of trying one backend."""
    backend: str
    ok: bool
    value: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class PutResult:
    cid: str
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def fallback_backend(self) -> Optional[str]:
        """Backend that stored the object when the first choice failed."""
        if len(self.attempts) > 1 and self.attempts[-1].ok:
            return self.attempts[-1].backend
        return None

    def warnings(self) -> List[str]:
        fb = self.fallback_backend
        return [f"storage_fallback:{fb}"] if fb else []


@dataclass
class GetResult:
    """Fetched bytes plus every source tried and the fallbacks that fired."""
    data: bytes
    attempts: List[Attempt] = field(default_factory=list)
    fallbacks: List[str] = field(default_factory=list)

    def warnings(self) -> List[str]:
        return list(self.fallbacks)


class FallbackContentStore(ContentStore):
    """
    Ordered chain of backends.

    Writes go to the first backend that accepts them; reads walk the
    whole chain. Each try is recorded as an ``Attempt``.
    """
    name = "chain"

    def __init__(self, backends: Sequence[ContentStore], timeout: Optional[float] = None):
        if not backends:
            raise ValueError("at least one backend required")
        self.backends = list(backends)
        self.timeout = timeout

    async def put_traced(self, data: bytes) -> PutResult:
        attempts: List[Attempt] = []
        for backend in self.backends:
            try:
                cid = await bounded(backend.put(data), self.timeout, f"{backend.name} put", backend.name)
            except StoreError as e:
                attempts.append(Attempt(backend=backend.name, ok=False, reason=str(e)))
                logger.warning(
                    "store put failed, trying next backend",
                    extra={"extra_fields": {"backend": backend.name, "reason": str(e)}},
                )
                continue
            attempts.append(Attempt(backend=backend.name, ok=True, value=cid))
            return PutResult(cid=cid, attempts=attempts)
        reasons = "; ".join(f"{a.backend}: {a.reason}" for a in attempts)
        raise StoreError(f"all backends failed: {reasons}")

    async def put(self, data: bytes) -> str:
        return (await self.put_traced(data)).cid

    async def get_traced(self, cid: str) -> GetResult:
        attempts: List[Attempt] = []
        for position, backend in enumerate(self.backends):
            try:
                got = await bounded(get_traced(backend, cid), self.timeout, f"{backend.name} get", backend.name)
            except StoreError as e:
                attempts.append(Attempt(backend=backend.name, ok=False, reason=str(e)))
                continue
            fallbacks = list(got.fallbacks)
            if position > 0:
                fallbacks.append(f"storage_fallback:{backend.name}")
                logger.warning(
                    "store get served by fallback backend",
                    extra={"extra_fields": {"backend": backend.name, "cid": cid}},
                )
            return GetResult(data=got.data, attempts=attempts + got.attempts, fallbacks=fallbacks)
        reasons = "; ".join(f"{a.backend}: {a.reason}" for a in attempts)
        raise StoreError(f"not retrievable: {cid} ({reasons})", cid=cid)

    async def get(self, cid: str) -> bytes:
        return (await self.get_traced(cid)).data


async def put_traced(store: ContentStore, data: bytes) -> PutResult:
    """``put`` on any store, reporting attempts when the store is a chain."""
    if isinstance(store, FallbackContentStore):
        return await store.put_traced(data)
    cid = await store.put(data)
    return PutResult(cid=cid, attempts=[Attempt(backend=store.name, ok=True, value=cid)])


async def get_traced(store: ContentStore, cid: str) -> GetResult:
    """``get`` on any store, reporting fallbacks for stores that have them."""
    if isinstance(store, (FallbackContentStore, IpfsContentStore)):
        return await store.get_traced(cid)
    data = await store.get(cid)
    return GetResult(data=data, attempts=[Attempt(backend=store.name, ok=True, value=cid)])
