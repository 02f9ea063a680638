"""Error-Sample Store

Keeps a bounded projection of every failing input so failures can be
debugged offline without replaying the run. Samples are flushed to a JSON
array file every ``flush_every`` samples and once more at the end of the
run.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ErrorSample, Phase

logger = logging.getLogger(__name__)

FLUSH_EVERY = 10
SAMPLE_TITLE_CHARS = 100


def _product_sample(product: Any) -> Dict[str, Any]:
    if not isinstance(product, dict):
        return {"raw": repr(product)[:SAMPLE_TITLE_CHARS]}
    title = product.get("title")
    return {
        "id": product.get("id"),
        "title": str(title)[:SAMPLE_TITLE_CHARS] if title is not None else None,
        "brand": product.get("brand"),
        "pricing": product.get("pricing"),
        "categories": product.get("categories"),
    }


class ErrorSampleStore:
    def __init__(self, path: Path, enabled: bool = True, flush_every: int = FLUSH_EVERY):
        self.path = Path(path)
        self.enabled = enabled
        self.flush_every = flush_every
        self.samples: List[ErrorSample] = []

    def __len__(self) -> int:
        return len(self.samples)

    def record(
        self,
        product: Any,
        error: Any,
        phase: Phase,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Capture one failing input; no-op when capture is disabled."""
        if not self.enabled:
            return

        product_id = product.get("id") if isinstance(product, dict) else None
        title = product.get("title") if isinstance(product, dict) else None
        sample = ErrorSample(
            timestamp=datetime.now(timezone.utc).isoformat(),
            product_id=str(product_id) if product_id is not None else "unknown",
            product_title=str(title)[:SAMPLE_TITLE_CHARS] if title is not None else "unknown",
            error=str(error) if error else "Unknown error",
            phase=phase,
            context=context or {},
            product_sample=_product_sample(product),
        )
        self.samples.append(sample)

        if len(self.samples) % self.flush_every == 0:
            self.flush()

    def flush(self) -> Optional[Path]:
        """Write every captured sample to disk. Returns the path, or None if empty."""
        if not self.samples:
            return None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(
                [s.model_dump() for s in self.samples], f, ensure_ascii=False, indent=2, default=str
            )
        logger.debug("Flushed %d error samples to %s", len(self.samples), self.path)
        return self.path
