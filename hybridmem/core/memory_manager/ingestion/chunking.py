"""Line-based chunking of markdown and transcript text."""

from ...enumeration import MemorySource
from ...schema import ChunkMetadata, MemoryChunk
from ...utils.common_utils import hash_text

# Rough characters-per-token ratio used to size chunks without a tokenizer
CHARS_PER_TOKEN = 4


def make_chunk_id(source: str, path: str, start_line: int, end_line: int, chunk_hash: str, model: str, ordinal: int):
    return hash_text(f"{source}:{path}:{start_line}:{end_line}:{chunk_hash}:{model}:{ordinal}")


def chunk_markdown(
    text: str,
    path: str,
    source: MemorySource | str,
    model: str = "",
    chunk_tokens: int = 400,
    overlap: int = 80,
    line_offset: int = 0,
    metadata: ChunkMetadata | dict | None = None,
) -> list[MemoryChunk]:
    """Split `text` into overlapping chunks of whole lines.

    Args:
        text: Content to split
        path: Workspace-relative path of the file
        source: Source tag stored on every chunk
        model: Embedding model the chunks will be embedded with
        chunk_tokens: Target chunk size in tokens
        overlap: Tokens repeated at the start of the next chunk
        line_offset: Lines preceding `text` in the file (e.g. frontmatter), so
            reported line numbers point into the original file
        metadata: Metadata copied onto every chunk

    Lines longer than a chunk are cut into segments that share a line number.
    """
    if not text:
        return []

    source = source.value if isinstance(source, MemorySource) else source
    max_chars = max(32, chunk_tokens * CHARS_PER_TOKEN)
    overlap_chars = max(0, overlap * CHARS_PER_TOKEN)
    chunk_metadata = ChunkMetadata.from_raw(metadata)

    chunks: list[MemoryChunk] = []
    window: list[tuple[int, str]] = []
    window_chars = 0

    def flush():
        if not window:
            return
        body = "\n".join(segment for _, segment in window)
        if not body.strip():
            return
        start_line = window[0][0] + line_offset
        end_line = window[-1][0] + line_offset
        chunk_hash = hash_text(body)
        chunks.append(
            MemoryChunk(
                id=make_chunk_id(source, path, start_line, end_line, chunk_hash, model, len(chunks)),
                path=path,
                source=source,
                start_line=start_line,
                end_line=end_line,
                text=body,
                hash=chunk_hash,
                model=model,
                metadata=chunk_metadata.model_copy(),
            ),
        )

    def keep_overlap() -> tuple[list[tuple[int, str]], int]:
        if overlap_chars <= 0:
            return [], 0
        kept: list[tuple[int, str]] = []
        size = 0
        for entry in reversed(window):
            kept.insert(0, entry)
            size += len(entry[1]) + 1
            if size >= overlap_chars:
                break
        return kept, size

    for line_no, line in enumerate(text.split("\n"), start=1):
        segments = [line[i : i + max_chars] for i in range(0, len(line), max_chars)] or [""]
        for segment in segments:
            size = len(segment) + 1
            if window and window_chars + size > max_chars:
                flush()
                window, window_chars = keep_overlap()
                if window_chars + size > max_chars:
                    window, window_chars = [], 0
            window.append((line_no, segment))
            window_chars += size

    flush()
    return chunks
