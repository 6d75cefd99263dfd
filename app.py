import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, UploadFile
from mangum import Mangum

from agent import load_claims, run_agent
from config import FORM_DATA_FILE, PORTAL_URL, USE_AGENTCORE, validate_config
from safety import UnsafeActionError
from session import AuthenticationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 1 * 1024 * 1024
EXECUTION_TIMEOUT = 900


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_config()
    logger.info("App startup — config validated, claims file: %s", FORM_DATA_FILE)
    yield
    logger.info("App shutdown")


app = FastAPI(lifespan=lifespan)
handler = Mangum(app, lifespan="auto")


def _parse_upload(contents: bytes) -> list:
    try:
        data = json.loads(contents)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON in uploaded file")
    if not isinstance(data, list):
        raise HTTPException(status_code=400, detail="JSON must be a list of claim objects")
    if not data:
        raise HTTPException(status_code=400, detail="No claims in uploaded file")
    return data


@app.get("/health")
async def health():
    return {"status": "ok", "portal": PORTAL_URL, "agentcore": USE_AGENTCORE}


@app.post("/run")
async def run_claims(file: UploadFile = File(...)):
    if not (file.filename or "").lower().endswith(".json"):
        raise HTTPException(status_code=400, detail="Only .json files are accepted")

    contents = await file.read()
    if len(contents) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File exceeds 1 MB limit")
    logger.info("Received upload: %s (%d bytes)", file.filename, len(contents))

    data = _parse_upload(contents)
    claims, errors = load_claims(data)
    if not any(claims):
        invalid = [{"entry": i, "error": err} for i, err in enumerate(errors, 1)]
        logger.warning("Rejecting upload, no valid claims: %s", invalid[:5])
        raise HTTPException(status_code=422, detail=invalid)

    FORM_DATA_FILE.parent.mkdir(parents=True, exist_ok=True)
    FORM_DATA_FILE.write_text(json.dumps(data, indent=2))
    logger.info("Saved %d claims (%d invalid), starting execution",
                len(data), sum(1 for c in claims if c is None))

    try:
        results = await asyncio.wait_for(run_agent(), timeout=EXECUTION_TIMEOUT)
    except asyncio.TimeoutError:
        logger.error("Execution timed out after %ds", EXECUTION_TIMEOUT)
        raise HTTPException(status_code=504, detail="Execution timed out")
    except UnsafeActionError as e:
        logger.critical("Run aborted by safety gate: %s", e)
        raise HTTPException(status_code=409, detail=str(e))
    except AuthenticationError as e:
        logger.error("Run aborted, portal login failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error("Execution failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    drafted = sum(1 for r in results if r["status"] == "success")
    logger.info("Execution completed — %d drafted, %d failed", drafted, len(results) - drafted)
    return {"status": "success", "drafted": drafted, "failed": len(results) - drafted, "results": results}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
