from kb_rag_core.extractors.basic import ExtractResult, extract_text


def extract_plain_text(data: bytes, content_type: str | None, filename: str | None = None) -> str:
    return extract_text(data=data, content_type=content_type, filename=filename).text


__all__ = ["ExtractResult", "extract_plain_text", "extract_text"]
