"""Delivery — name and save the finished artifact."""

from pathlib import Path

from loguru import logger

from .formats import extension_for


def suggested_filename(base_name: str, mime_type: str) -> str:
    """'{base}.mp4' when the negotiated type mentions mp4, else '{base}.webm'."""
    return f"{base_name}.{extension_for(mime_type)}"


def save_artifact(artifact, output_dir: str | Path, base_name: str) -> Path:
    """Write the artifact bytes to output_dir/{base}.{ext}.

    Creates output_dir if needed and overwrites an existing file.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / suggested_filename(base_name, artifact.mime_type)
    out_path.write_bytes(artifact.data)
    logger.info(f"Saved {len(artifact.data)} bytes to {out_path}")
    return out_path
