"""Paragraph-packing text splitter for document ingestion."""


def _tail_words(text: str, count: int) -> str:
    if count <= 0:
        return ""
    return " ".join(text.split(" ")[-count:])


def split_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> list[str]:
    """Split ``text`` into chunks of roughly ``chunk_size`` characters.

    Paragraphs (separated by blank lines) are packed together until the
    next one would overflow the chunk. Each new chunk starts with the last
    ``chunk_overlap // 10`` words of the previous one so context carries
    across the boundary. A paragraph that is longer than ``chunk_size`` on
    its own is hard-sliced, with consecutive slices sharing
    ``chunk_overlap`` characters.

    Raises:
        ValueError: if ``chunk_size`` is not positive or the overlap is not
            smaller than the chunk size.
    """
    if chunk_size <= 0:
        msg = f"chunk_size must be positive, got {chunk_size}"
        raise ValueError(msg)
    if not 0 <= chunk_overlap < chunk_size:
        msg = f"chunk_overlap must be in [0, {chunk_size}), got {chunk_overlap}"
        raise ValueError(msg)

    paragraphs = [p for p in text.split("\n\n") if p.strip()]
    step = chunk_size - chunk_overlap

    chunks: list[str] = []
    current = ""
    for paragraph in paragraphs:
        if len(current) + len(paragraph) < chunk_size:
            current = f"{current}\n\n{paragraph}" if current else paragraph
            continue

        if current:
            chunks.append(current)
            tail = _tail_words(current, chunk_overlap // 10)
            current = f"{tail}\n\n{paragraph}" if tail else paragraph
        else:
            current = paragraph

        while len(current) > chunk_size:
            chunks.append(current[:chunk_size])
            current = current[step:]

    if current:
        chunks.append(current)
    return chunks
