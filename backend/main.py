from __future__ import annotations

import logging
import os
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from contextpress import (
    CompressionMetrics,
    ContextCompressor,
    ImportanceClassifier,
    MeasurementNotFound,
    MeasurementStore,
    STRATEGIES,
    StrategyNotFound,
    TextSummarizer,
    UnsupportedFormat,
)
from contextpress.config import DEFAULT_STRATEGY, LOG_LEVEL
from contextpress.pipeline import CompressionOptions

load_dotenv()

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)

app = FastAPI(title="contextpress")
logger = logging.getLogger(__name__)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RECORD_MEASUREMENTS = os.getenv("CONTEXTPRESS_RECORD_MEASUREMENTS", "true").lower() in {"1", "true", "yes"}

store = MeasurementStore()
metrics = CompressionMetrics(store)
compressor = ContextCompressor(metrics=metrics if RECORD_MEASUREMENTS else None)
classifier = ImportanceClassifier()
summarizer = TextSummarizer()

EXPORT_MEDIA_TYPES = {"json": "application/json", "csv": "text/csv", "report": "text/markdown"}


class CompressRequest(BaseModel):
    input: str
    options: CompressionOptions = Field(default_factory=lambda: CompressionOptions(strategy=DEFAULT_STRATEGY))


class CompressResponse(BaseModel):
    output: str
    original_tokens: int
    compressed_tokens: int
    tokens_saved: int
    compression_ratio: float
    strategy: str
    success: bool
    processing_time: float
    warnings: list[str] = Field(default_factory=list)
    measurement_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


class DecompressRequest(BaseModel):
    input: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class DecompressResponse(BaseModel):
    output: str
    strategy: str
    success: bool
    error: str | None = None


class AnalyzeRequest(BaseModel):
    input: str
    preserve_structure: bool = True
    detailed_scoring: bool = False


class SummarizeRequest(BaseModel):
    input: str
    target_ratio: float = Field(default=0.3, gt=0.0, le=1.0)
    strategy: str = "extractive"


@app.get("/health")
async def health_check() -> dict[str, str]:
    tokenizer = "tiktoken" if compressor.token_counter.using_tiktoken else "heuristic"
    return {"status": "ok", "tokenizer": tokenizer}


@app.get("/strategies")
def list_strategies() -> dict[str, Any]:
    return {name: compressor.get_strategy_info(name) for name in STRATEGIES}


@app.get("/strategies/{name}")
def strategy_info(name: str) -> dict[str, Any]:
    try:
        return compressor.get_strategy_info(name)
    except StrategyNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/compress", response_model=CompressResponse)
def compress_text(payload: CompressRequest) -> CompressResponse:
    logger.info(
        "Compress request: strategy=%s, max_tokens=%s, input_len=%d",
        payload.options.strategy, payload.options.max_tokens, len(payload.input),
    )
    try:
        result = compressor.compress(payload.input, payload.options)
    except StrategyNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return CompressResponse(
        output=result.compressed,
        original_tokens=result.original_tokens,
        compressed_tokens=result.compressed_tokens,
        tokens_saved=max(0, result.tokens_reduced),
        compression_ratio=result.compression_ratio,
        strategy=result.strategy,
        success=result.success,
        processing_time=result.processing_time,
        warnings=result.warnings,
        measurement_id=result.metadata.get("measurement_id"),
        error=result.error,
        metadata=result.metadata if payload.options.generate_metadata else None,
    )


@app.post("/decompress", response_model=DecompressResponse)
def decompress_text(payload: DecompressRequest) -> DecompressResponse:
    result = compressor.decompress(payload.input, payload.metadata)
    return DecompressResponse(
        output=result.decompressed,
        strategy=result.strategy,
        success=result.success,
        error=result.error,
    )


@app.post("/analyze")
def analyze_text(payload: AnalyzeRequest) -> dict[str, Any]:
    analysis = classifier.analyze_importance(
        payload.input,
        preserve_structure=payload.preserve_structure,
        detailed_scoring=payload.detailed_scoring,
    )
    return {
        "sections": [
            {
                "name": s.name,
                "level": s.level,
                "importance": s.importance,
                "score": s.score,
                "tokens": s.tokens,
                "breakdown": s.breakdown,
            }
            for s in analysis.sections
        ],
        "summary": analysis.summary,
        "recommendations": analysis.recommendations,
        "metadata": analysis.metadata,
    }


@app.post("/summarize")
def summarize_text(payload: SummarizeRequest) -> dict[str, Any]:
    try:
        result = summarizer.summarize(payload.input, payload.target_ratio, payload.strategy)
    except StrategyNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "summary": result.summary,
        "original_tokens": result.original_tokens,
        "summary_tokens": result.summary_tokens,
        "compression_ratio": result.compression_ratio,
        "key_points": result.key_points,
        "metadata": result.metadata,
    }


@app.get("/measurements/{measurement_id}")
def export_measurement(measurement_id: str, format: str = "json") -> PlainTextResponse:
    try:
        body = metrics.export_measurement(measurement_id, format)
    except UnsupportedFormat as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MeasurementNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return PlainTextResponse(body, media_type=EXPORT_MEDIA_TYPES[format])

