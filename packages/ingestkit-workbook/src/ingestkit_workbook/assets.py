"""Asset extraction side pipeline.

Pulls embedded pictures out of every sheet except the main estimate sheet,
ties each one to a concept code (a dotted numeric line-item id such as
``5.2.4.1``) found in column A, re-encodes it with Pillow, and uploads it
under ``{prefix}/assets/{concept_code}/{asset_id}.webp``.

Scanning is sequential; each image goes to a small thread pool for
encoding and upload as soon as it is found.
A failure for one image is recorded and the rest carry on.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from openpyxl.utils import get_column_letter
from PIL import Image

from ingestkit_workbook.chunk_writer import JSON_CONTENT_TYPE
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.converter import normalize_value
from ingestkit_workbook.errors import (
    ErrorCode,
    IngestError,
    MainSheetNotFoundError,
    WorkbookIngestException,
)
from ingestkit_workbook.models import (
    Asset,
    AssetManifest,
    AssetStats,
    MainSheetData,
    ProcessingError,
)
from ingestkit_workbook.package import EmbeddedImage, SheetPart
from ingestkit_workbook.protocols import ObjectStore
from ingestkit_workbook.reader import WorkbookStreamReader
from ingestkit_workbook.retry import put_with_retry

logger = logging.getLogger("ingestkit_workbook")

CONCEPT_CODE_RE = re.compile(r"^[\d.]+$")

ASSET_WARNING_CODES: dict[str, ErrorCode] = {
    "sheet_processing": ErrorCode.W_ASSET_SHEET_PROCESSING,
    "image_extraction": ErrorCode.W_ASSET_IMAGE_EXTRACTION,
    "download": ErrorCode.W_ASSET_IMAGE_EXTRACTION,
    "conversion": ErrorCode.W_ASSET_CONVERSION,
    "upload": ErrorCode.W_ASSET_UPLOAD,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_main_sheet(sheet_names: list[str], patterns: list[str]) -> str:
    """Pick the main sheet: exact pattern match first, then case-insensitive substring.

    Raises
    ------
    MainSheetNotFoundError
        If no sheet name matches any pattern.
    """
    for pattern in patterns:
        if pattern in sheet_names:
            return pattern
    for pattern in patterns:
        needle = pattern.lower()
        for name in sheet_names:
            if needle in name.lower():
                return name
    raise MainSheetNotFoundError(
        f"No sheet matches {patterns}; available sheets: {sheet_names}",
    )


def concept_code_text(value: Any) -> str | None:
    """Return *value* as a concept code if it looks like one (``5.2.1``)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text if text and CONCEPT_CODE_RE.match(text) else None


def slugify_sheet_name(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip()).lower()
    return re.sub(r"[^\w.\-]", "-", slug)


def resolve_concept_code(column_a: dict[int, Any], row_number: int, sheet_name: str) -> str:
    """Resolve the concept code for an image anchored at 1-based *row_number*.

    Same row first, then the nearest matching column-A value above, then
    the slugified sheet name.
    """
    for row in range(row_number, 0, -1):
        code = concept_code_text(column_a.get(row))
        if code is not None:
            return code
    return slugify_sheet_name(sheet_name)


def asset_warning(error: ProcessingError) -> IngestError:
    """Surface one asset failure as a recoverable run warning."""
    subject = f"{error.asset_id}: " if error.asset_id else ""
    return IngestError(
        code=ASSET_WARNING_CODES[error.type],
        message=f"{subject}{error.message}",
        sheet_name=error.sheet,
        stage="assets",
        recoverable=True,
    )


def reencode_image(
    raw: bytes,
    max_dimension: int,
    quality: int,
    image_format: str = "WEBP",
) -> tuple[bytes, int, int]:
    """Re-encode *raw* to *image_format*, downscaling (never upscaling) to *max_dimension*.

    Returns ``(encoded_bytes, width, height)``.
    """
    with Image.open(io.BytesIO(raw)) as source:
        source.load()
        image = source
        if image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")
        if max(image.size) > max_dimension:
            image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        image.save(out, format=image_format, quality=quality)
        return out.getvalue(), image.width, image.height


@dataclass(frozen=True)
class _PendingAsset:
    asset_id: str
    concept_code: str
    sheet: str
    image: EmbeddedImage
    raw: bytes
    content_hash: str


@dataclass
class AssetExtractionResult:
    manifest: AssetManifest
    manifest_key: str
    main_data: MainSheetData | None = None
    main_data_key: str | None = None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class AssetExtractor:
    """Extracts, re-encodes and uploads sheet images keyed by concept code.

    Parameters
    ----------
    store:
        Object store receiving the re-encoded images and the asset manifest.
    config:
        Main-sheet patterns, encoding settings and upload concurrency.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or WorkbookProcessorConfig()

    def extract(
        self,
        reader: WorkbookStreamReader,
        output_prefix: str,
        original_file_name: str,
    ) -> AssetExtractionResult:
        """Run the side pipeline over an open reader.

        Raises
        ------
        MainSheetNotFoundError
            If no sheet matches the configured main-sheet patterns.
        """
        config = self._config
        start = time.monotonic()
        prefix = output_prefix.rstrip("/")
        parts = reader.sheet_parts
        main_sheet = find_main_sheet([p.name for p in parts], config.main_sheet_patterns)
        errors: list[ProcessingError] = []

        # Step 1: main sheet rows (header-keyed, tagged with concept codes)
        main_data: MainSheetData | None = None
        try:
            main_data = build_main_sheet_data(reader, main_sheet)
        except WorkbookIngestException as exc:
            errors.append(ProcessingError(sheet=main_sheet, type="sheet_processing", message=exc.message))

        # Step 2: scan every other sheet; encode + upload on the pool as found
        images_found = 0
        seen: set[str] = set()
        with ThreadPoolExecutor(max_workers=config.asset_upload_concurrency) as pool:
            futures: list[Future[Asset | ProcessingError]] = []
            for part in parts:
                if part.name == main_sheet:
                    continue
                images_found += self._scan_sheet(
                    reader,
                    part,
                    errors,
                    seen,
                    lambda item: futures.append(pool.submit(self._process_one, item, prefix)),
                )
            outcomes = [future.result() for future in futures]

        assets: list[Asset] = []
        for outcome in outcomes:
            if isinstance(outcome, Asset):
                assets.append(outcome)
            else:
                errors.append(outcome)

        concept_map: dict[str, list[str]] = {}
        for asset in assets:
            concept_map.setdefault(asset.concept_code, []).append(asset.id)

        failed = sum(1 for e in errors if e.type != "sheet_processing")
        manifest = AssetManifest(
            original_file_name=original_file_name,
            main_sheet=main_sheet,
            assets=assets,
            concept_asset_map=concept_map,
            stats=AssetStats(
                total_sheets=len(parts),
                main_sheet_rows=len(main_data.rows) if main_data else 0,
                images_found=images_found,
                images_processed=len(assets),
                images_failed=failed,
                total_processing_time_ms=int((time.monotonic() - start) * 1000),
            ),
            errors=errors,
        )

        # Step 3: persist the main data and the asset manifest
        main_data_key = None
        if main_data is not None and config.write_main_sheet_data:
            main_data_key = f"{prefix}/main-data.json"
            put_with_retry(self._store, main_data_key, main_data.to_json_bytes(), JSON_CONTENT_TYPE, config)
        manifest_key = f"{prefix}/asset-manifest.json"
        put_with_retry(self._store, manifest_key, manifest.to_json_bytes(), JSON_CONTENT_TYPE, config)

        logger.info(
            "Assets: %d found, %d processed, %d failed (main sheet %r)",
            images_found,
            len(assets),
            failed,
            main_sheet,
        )
        return AssetExtractionResult(
            manifest=manifest,
            manifest_key=manifest_key,
            main_data=main_data,
            main_data_key=main_data_key,
        )

    def _scan_sheet(
        self,
        reader: WorkbookStreamReader,
        part: SheetPart,
        errors: list[ProcessingError],
        seen: set[str],
        submit: Callable[[_PendingAsset], None],
    ) -> int:
        """Hand every new image of *part* to *submit*; return how many images the sheet holds."""
        try:
            images = reader.package.images(part)
            column_a = reader.column_values(part.name, 1) if images else {}
        except WorkbookIngestException as exc:
            logger.warning("Skipping images of sheet %r: %s", part.name, exc.message)
            errors.append(ProcessingError(sheet=part.name, type="sheet_processing", message=exc.message))
            return 0

        for image in images:
            try:
                raw = reader.package.read_bytes(image.media_path)
            except WorkbookIngestException as exc:
                errors.append(ProcessingError(sheet=part.name, type="image_extraction", message=exc.message))
                continue
            code = resolve_concept_code(column_a, image.anchor_row + 1, part.name)
            digest = hashlib.md5(raw).hexdigest()
            asset_id = f"img-{code}-{digest[:8]}"
            if asset_id in seen:
                logger.debug("Skipping duplicate image %s on sheet %r", asset_id, part.name)
                continue
            seen.add(asset_id)
            submit(
                _PendingAsset(
                    asset_id=asset_id,
                    concept_code=code,
                    sheet=part.name,
                    image=image,
                    raw=raw,
                    content_hash=digest,
                )
            )
        return len(images)

    def _process_one(self, item: _PendingAsset, prefix: str) -> Asset | ProcessingError:
        config = self._config
        image_format = config.asset_format.upper()
        try:
            encoded, width, height = reencode_image(
                item.raw,
                config.asset_max_dimension,
                config.asset_quality,
                image_format,
            )
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("Could not re-encode %s: %s", item.asset_id, exc)
            return ProcessingError(
                sheet=item.sheet,
                asset_id=item.asset_id,
                type="conversion",
                message=str(exc),
            )

        extension = image_format.lower()
        key = f"{prefix}/assets/{item.concept_code}/{item.asset_id}.{extension}"
        content_type = Image.MIME.get(image_format, "application/octet-stream")
        try:
            put_with_retry(self._store, key, encoded, content_type, config)
        except WorkbookIngestException as exc:
            logger.warning("Upload of %s failed: %s", item.asset_id, exc.message)
            return ProcessingError(
                sheet=item.sheet,
                asset_id=item.asset_id,
                type="upload",
                message=exc.message,
            )
        except Exception as exc:
            # Store errors outside the taxonomy are permanent for this asset only
            logger.warning("Upload of %s failed: %s: %s", item.asset_id, type(exc).__name__, exc)
            return ProcessingError(
                sheet=item.sheet,
                asset_id=item.asset_id,
                type="upload",
                message=f"{type(exc).__name__}: {exc}",
            )

        return Asset(
            id=item.asset_id,
            concept_code=item.concept_code,
            sheet=item.sheet,
            cell_ref=f"{get_column_letter(item.image.anchor_column + 1)}{item.image.anchor_row + 1}",
            anchor_row=item.image.anchor_row,
            anchor_column=item.image.anchor_column,
            source_name=item.image.media_path.rsplit("/", 1)[-1],
            content_hash=item.content_hash,
            format=extension,
            width=width,
            height=height,
            size_bytes=len(encoded),
            key=key,
        )


def build_main_sheet_data(reader: WorkbookStreamReader, sheet_name: str) -> MainSheetData:
    """Read the main sheet as header-keyed rows using cached cell values."""
    headers: list[str] = []
    rows: list[dict[str, Any]] = []
    for row_number, values in reader.iter_values(sheet_name):
        if row_number == 1:
            headers = [
                str(value).strip() if value not in (None, "") else f"Column{i + 1}"
                for i, value in enumerate(values)
            ]
            continue
        record: dict[str, Any] = {}
        for i, raw in enumerate(values):
            value = normalize_value(raw)
            if value is None or value == "":
                continue
            header = headers[i] if i < len(headers) else f"Column{i + 1}"
            record[header] = value
        if not record:
            continue
        code = concept_code_text(values[0]) if values else None
        if code is not None:
            record["_conceptCode"] = code
        rows.append(record)
    return MainSheetData(sheet=sheet_name, headers=headers, rows=rows)
