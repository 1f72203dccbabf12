class UmaDecryptError(Exception):
    pass


class PreconditionError(UmaDecryptError):
    """Required input (directory, catalog file) is missing or unusable."""


class KeyResolutionError(UmaDecryptError):
    """The catalog could not be read, so no key index can be built."""


class CatalogDetectionError(KeyResolutionError):
    def __init__(self, path, plain_error, cipher_error) -> None:
        self.path = path
        self.plain_error = plain_error
        self.cipher_error = cipher_error
        super().__init__(
            f"Cannot open catalog {path} as plain ({plain_error}) "
            f"or encrypted ({cipher_error}) database"
        )


class CipherStoreError(UmaDecryptError):
    def __init__(self, message: str, rc: int = 0) -> None:
        self.rc = rc
        super().__init__(message)


class StoreOpenError(CipherStoreError):
    pass


class StoreKeyError(CipherStoreError):
    pass


class StoreQueryError(CipherStoreError):
    pass


class DecryptionError(UmaDecryptError):
    pass


class TableDumpError(UmaDecryptError):
    def __init__(self, table: str, cause: Exception) -> None:
        self.table = table
        self.cause = cause
        super().__init__(f"Failed to read table {table}: {cause}")


class OutputError(UmaDecryptError):
    """An output file or directory cannot be created or written."""
