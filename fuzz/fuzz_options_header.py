import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from upload_progress.exceptions import MalformedMultipartError
    from upload_progress.multipart import MultipartDecoder, parse_options_header


def fuzz_options_header(fdp: EnhancedDataProvider) -> None:
    parse_options_header(fdp.ConsumeRandomBytes())


def fuzz_boundary(fdp: EnhancedDataProvider) -> None:
    try:
        MultipartDecoder.get_boundary("multipart/form-data; " + fdp.ConsumeRandomString())
    except MalformedMultipartError:
        return


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    target = fdp.PickValueInList([fuzz_options_header, fuzz_boundary])
    try:
        target(fdp)
    except AssertionError:
        return
    except TypeError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
