import io
import sys
from unittest.mock import Mock

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from upload_progress.exceptions import MalformedMultipartError
    from upload_progress.multipart import MultipartDecoder, RequestContext

reporter = Mock()
IN_MEMORY = {"MAX_MEMORY_FILE_SIZE": float("inf")}


def decode_raw_body(fdp: EnhancedDataProvider) -> None:
    body = fdp.ConsumeRandomBytes()
    context = RequestContext("multipart/form-data; boundary=boundary", len(body), "utf-8", io.BytesIO(body))
    MultipartDecoder(reporter, config=IN_MEMORY, chunk_size=fdp.ConsumeChunkSize()).parse(context)


def decode_framed_body(fdp: EnhancedDataProvider) -> None:
    boundary = "boundary"
    chunk_size = fdp.ConsumeChunkSize()
    body = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="fuzz.bin"\r\n'
        f"Content-Type: application/octet-stream\r\n\r\n"
        f"{fdp.ConsumeRandomString()}\r\n"
        f"--{boundary}--\r\n"
    ).encode("latin1", errors="ignore")
    context = RequestContext(f"multipart/form-data; boundary={boundary}", None, "utf-8", io.BytesIO(body))
    MultipartDecoder(reporter, config=IN_MEMORY, chunk_size=chunk_size).parse(context)


def decode_content_type(fdp: EnhancedDataProvider) -> None:
    content_type = "multipart/form-data; " + fdp.ConsumeRandomString()
    context = RequestContext(content_type, 0, "utf-8", io.BytesIO(b""))
    MultipartDecoder(reporter, config=IN_MEMORY).parse(context)


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [decode_raw_body, decode_framed_body, decode_content_type]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except MalformedMultipartError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
