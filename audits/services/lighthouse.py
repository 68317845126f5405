"""
Lighthouse runner.

Shells out to the Lighthouse CLI for one URL and one device preset and reads
back the JSON report. A run that fails, times out or produces no readable
report returns ``None``; the performance unit treats that as a transient
failure and retries.
"""

import json
import logging
import os
import shlex
import subprocess
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)

# Chrome flags for containerized environments
CHROME_FLAGS = "--headless --no-sandbox --disable-setuid-sandbox --disable-dev-shm-usage --disable-gpu"

# audit key -> (metric name, milliseconds to seconds)
METRIC_AUDITS = {
    "lcp": ("largest-contentful-paint", True),
    "fid": ("max-potential-fid", False),
    "cls": ("cumulative-layout-shift", False),
    "fcp": ("first-contentful-paint", True),
    "ttfb": ("server-response-time", False),
    "speed_index": ("speed-index", False),
    "total_blocking_time": ("total-blocking-time", False),
}

CATEGORY_SCORES = {
    "performance_score": "performance",
    "accessibility_score": "accessibility",
    "seo_score": "seo",
    "best_practices_score": "best-practices",
}


def extract_metrics(report: dict) -> dict:
    audits = report.get("audits") or {}
    categories = report.get("categories") or {}

    metrics = {}
    for name, (audit_key, to_seconds) in METRIC_AUDITS.items():
        value = (audits.get(audit_key) or {}).get("numericValue")
        if value is None:
            metrics[name] = None
        else:
            metrics[name] = value / 1000 if to_seconds else value

    for name, category_key in CATEGORY_SCORES.items():
        score = (categories.get(category_key) or {}).get("score")
        metrics[name] = None if score is None else round(score * 100)

    return metrics


class LighthouseRunner:
    def __init__(self, lighthouse_path: str = "npx lighthouse", chrome_path: str = "", timeout: int = 120):
        self.lighthouse_path = lighthouse_path
        self.chrome_path = chrome_path
        self.timeout = timeout

    def build_command(self, url: str, output_path: str, device_type: str):
        preset = "perf" if device_type == "mobile" else "desktop"
        command = shlex.split(self.lighthouse_path) + [
            url,
            "--output=json",
            f"--output-path={output_path}",
            f"--preset={preset}",
            "--quiet",
            f"--chrome-flags={CHROME_FLAGS}",
        ]
        if self.chrome_path:
            command.append(f"--chrome-path={self.chrome_path}")
        return command

    def measure(self, url: str, device_type: str = "mobile") -> Optional[dict]:
        with tempfile.NamedTemporaryFile(encoding="utf-8", mode="w", suffix=".json", delete=False) as tmp_file:
            output_path = tmp_file.name

        logger.info(f"Running Lighthouse for {url} ({device_type})")
        try:
            result = subprocess.run(
                self.build_command(url, output_path, device_type),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
            if result.returncode != 0:
                logger.error(f"Lighthouse failed for {url}: {result.stderr.strip()}")
                return None

            with open(output_path, "r", encoding="utf-8") as f:
                report = json.load(f)
        except subprocess.TimeoutExpired:
            logger.error(f"Lighthouse timed out after {self.timeout}s for {url}")
            return None
        except FileNotFoundError as e:
            logger.error(f"Unable to run Lighthouse for {url}: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse Lighthouse report for {url}: {e}")
            return None
        finally:
            if os.path.exists(output_path):
                os.unlink(output_path)

        score = (report.get("categories", {}).get("performance") or {}).get("score")
        logger.info(f"Lighthouse completed for {url} ({device_type}), performance score {score}")
        return report
