"""
Error taxonomy for the ledger and document store.

Every error raised by the core derives from MedBlockError so that outer layers
can map them in one place (see medblock.api).
"""


class MedBlockError(Exception):
    """Base class for all MedBlock errors"""


class AccessDenied(MedBlockError):
    """The requester is not allowed to perform the operation"""


class NotFound(MedBlockError):
    """A document or record id is unknown"""


class ValidationError(MedBlockError):
    """A required input is missing or malformed"""


class DecryptionError(MedBlockError):
    """A blob could not be decrypted with the supplied key"""


class MiningExhausted(MedBlockError):
    """A bounded nonce search ended without meeting the difficulty target"""


class ChainIntegrityError(MedBlockError):
    """A loaded chain failed verification"""
