"""
Trainer library: versioned record schema, text/binary codecs and
streaming corpus I/O.
"""

from .schema import (
    CURRENT_VERSION,
    END_SENTINEL,
    TrainerRecord,
    encode_v2,
    decode_v2,
)
from .codecs import TextWriter, TextReader, BinaryWriter, BinaryReader, is_binary
from .corpus import (
    LibraryWriter,
    Trainer,
    TrainerLibrary,
    copy_library,
    read_library,
    read_stream,
    write_library,
)

__all__ = [
    'CURRENT_VERSION',
    'END_SENTINEL',
    'TrainerRecord',
    'encode_v2',
    'decode_v2',
    'TextWriter',
    'TextReader',
    'BinaryWriter',
    'BinaryReader',
    'is_binary',
    'LibraryWriter',
    'Trainer',
    'TrainerLibrary',
    'copy_library',
    'read_library',
    'read_stream',
    'write_library',
]
