import time
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request

from aiproof.envelope import EnvelopeUnavailable, InvalidEnvelope, PublishRejected
from aiproof.providers import KNOWN_PROVIDERS
from aiproof.store import StoreError

from .config import Settings, validate_config
from .logging_config import audit_log, configure_logging, set_request_id
from .models import PublishRequest, SummarizeRequest, VerifyContentRequest, VerifyProvenanceRequest
from .services import Services, build_services

app = FastAPI(title="AIProof Provenance Service")

SERVICES: Optional[Services] = None
STARTED_AT = time.time()

FALLBACK_PREFIXES = ("provider_fallback:", "storage_fallback:", "gateway_fallback:", "attestation_failed:")


@app.on_event("startup")
def _startup():
    global SERVICES, STARTED_AT
    settings = Settings.from_env()
    configure_logging(settings.effective_log_level, json_format=settings.log_json,
                      log_file=settings.log_file or None)
    missing = [name for name, ok in validate_config(settings).items() if not ok]
    if missing:
        audit_log.security_event("config_path_missing", severity="high", missing=missing)
    SERVICES = build_services(settings)
    STARTED_AT = time.time()


@app.on_event("shutdown")
def _shutdown():
    if SERVICES is not None:
        SERVICES.close()


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _services() -> Services:
    if SERVICES is None:
        raise HTTPException(503, "SERVICE_NOT_STARTED")
    return SERVICES


def _report_fallbacks(component: str, warnings: List[str]) -> None:
    for w in warnings:
        if w.startswith(FALLBACK_PREFIXES):
            audit_log.fallback_fired(component, w)


@app.get("/health")
def health():
    env = SERVICES.settings.env if SERVICES else "unknown"
    return {
        "status": "ok" if SERVICES else "starting",
        "timestamp": int(time.time() * 1000),
        "uptimeSeconds": round(time.time() - STARTED_AT, 3),
        "env": env,
    }


@app.get("/providers")
def providers():
    return {"providers": _services().providers.active()}


@app.post("/summarize")
async def summarize(req: SummarizeRequest):
    svc = _services()
    if len(req.text) > svc.settings.max_text_length:
        raise HTTPException(400, "TEXT_TOO_LONG")
    if req.provider not in KNOWN_PROVIDERS:
        raise HTTPException(400, "UNKNOWN_PROVIDER")

    try:
        built = await svc.builder.build(
            req.text,
            prompt=req.prompt,
            provider=req.provider,
            model=req.model,
            use_attestation=req.use_zk,
            params=req.params,
        )
    except StoreError as e:
        audit_log.fallback_fired("store", str(e))
        raise HTTPException(502, "CONTENT_STORE_UNAVAILABLE")

    audit_log.provenance_constructed(
        output_hash=built.record.output_hash,
        model_id=built.record.model_id,
        provider=built.provider_output.provider,
        attestation_mode=built.attestation.mode.value,
        warnings=built.warnings,
    )
    _report_fallbacks("summarize", built.warnings)
    return built.to_unsigned_response()


@app.post("/publish")
async def publish(req: PublishRequest):
    svc = _services()
    try:
        result = await svc.publisher.publish(
            req.provenance,
            signature=req.signature,
            signer=req.signer,
            prompt_cid=req.prompt_cid,
        )
    except PublishRejected as e:
        audit_log.publish_rejected(str(e))
        raise HTTPException(400, str(e))
    except StoreError as e:
        audit_log.fallback_fired("store", str(e))
        raise HTTPException(502, "CONTENT_STORE_UNAVAILABLE")

    audit_log.provenance_published(
        signed_provenance_cid=result.signed_provenance_cid,
        output_hash=result.envelope.provenance.output_hash,
        signer=result.envelope.signer,
        warnings=result.warnings,
    )
    _report_fallbacks("publish", result.warnings)
    return result.to_dict()


@app.post("/verify-provenance")
async def verify_provenance(req: VerifyProvenanceRequest):
    svc = _services()
    try:
        report = await svc.verifier.verify(
            req.signed_provenance_cid,
            prompt=req.prompt,
            journal_cid=req.journal_cid,
            proof_cid=req.proof_cid,
            expect_keywords=req.expect_keywords,
            include_content=req.include_content,
        )
    except EnvelopeUnavailable:
        raise HTTPException(404, "ENVELOPE_NOT_FOUND")
    except InvalidEnvelope as e:
        raise HTTPException(400, str(e))

    audit_log.verification_completed(
        signed_provenance_cid=req.signed_provenance_cid,
        ok=report.ok,
        issues=list(report.issues),
        warnings=list(report.warnings),
    )
    _report_fallbacks("verify", report.warnings)
    if "signature_recover_mismatch" in report.issues:
        audit_log.security_event("signer_mismatch", severity="high", cid=req.signed_provenance_cid)
    return report.to_dict()


@app.post("/verify-content")
async def verify_content(req: VerifyContentRequest):
    result = await _services().verifier.verify_content(req.content, prompt=req.prompt)
    if result.report is not None:
        audit_log.verification_completed(
            signed_provenance_cid=result.report.signed_provenance_cid,
            ok=result.report.ok,
            issues=list(result.report.issues),
            warnings=list(result.report.warnings),
        )
    return result.to_dict()


@app.get("/index/{output_hash}")
def index_lookup(output_hash: str) -> Dict[str, object]:
    return {"outputHash": output_hash.lower(), "candidates": _services().index.lookup(output_hash)}

