"""
PE/COFF structure definitions for 32-bit and 64-bit images.

Every on-disk structure the loader touches is a dataclass with a struct
format string, so headers can be decoded from raw bytes, edited in place
and written back without losing fields.

We use dataclasses instead of NamedTuples for mutability - callers
routinely patch header fields (ImageBase, SizeOfImage, ...) after load.

References:
- Microsoft PE/COFF Specification
- https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

import struct
from dataclasses import astuple, dataclass
from typing import ClassVar, TypeVar

# =============================================================================
# Constants
# =============================================================================

# Defaults for freshly created images
FILE_ALIGNMENT_DEFAULT = 0x200
SECTION_ALIGNMENT_DEFAULT = 0x1000
IMAGE_BASE_DEFAULT = 0x400000
HEADERS_SIZE_NOT_ALIGNED = 0x400

# DOS Header
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian

# PE Signature
PE_SIGNATURE = b"PE\x00\x00"
PE_SIGNATURE_SIZE = 4
HEADER_OFFSET_ALIGNMENT = 8  # e_lfanew must be a multiple of this

# Machine types
IMAGE_FILE_MACHINE_UNKNOWN = 0x0
IMAGE_FILE_MACHINE_I386 = 0x14C
IMAGE_FILE_MACHINE_AMD64 = 0x8664
IMAGE_FILE_MACHINE_ARM64 = 0xAA64

# Optional header magic
IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B  # PE32
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B  # PE32+

# Section characteristics
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA = 0x00000080
IMAGE_SCN_MEM_DISCARDABLE = 0x02000000
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000

# File characteristics
IMAGE_FILE_RELOCS_STRIPPED = 0x0001
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020
IMAGE_FILE_32BIT_MACHINE = 0x0100
IMAGE_FILE_DLL = 0x2000

# Data directory indices
IMAGE_DIRECTORY_ENTRY_EXPORT = 0
IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_RESOURCE = 2
IMAGE_DIRECTORY_ENTRY_EXCEPTION = 3
IMAGE_DIRECTORY_ENTRY_SECURITY = 4
IMAGE_DIRECTORY_ENTRY_BASERELOC = 5
IMAGE_DIRECTORY_ENTRY_DEBUG = 6
IMAGE_DIRECTORY_ENTRY_TLS = 9
IMAGE_DIRECTORY_ENTRY_IAT = 12
IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

# Base relocation types
IMAGE_REL_BASED_ABSOLUTE = 0  # Padding, skip
IMAGE_REL_BASED_HIGH = 1
IMAGE_REL_BASED_LOW = 2
IMAGE_REL_BASED_HIGHLOW = 3  # 32-bit pointer
IMAGE_REL_BASED_HIGHADJ = 4
IMAGE_REL_BASED_DIR64 = 10  # 64-bit pointer

# Import lookup table ordinal flags
IMAGE_ORDINAL_FLAG32 = 0x80000000
IMAGE_ORDINAL_FLAG64 = 0x8000000000000000

# COFF symbol table entries (only needed to skip to the string table)
COFF_SYMBOL_SIZE = 18

# Structure sizes
DOS_HEADER_SIZE = 64
FILE_HEADER_SIZE = 20
OPTIONAL_HEADER32_SIZE = 96  # Without data directories
OPTIONAL_HEADER64_SIZE = 112  # Without data directories
DATA_DIRECTORY_SIZE = 8
SECTION_HEADER_SIZE = 40
SECTION_NAME_SIZE = 8


# =============================================================================
# PE/COFF Structures
# =============================================================================

_T = TypeVar("_T", bound="PackedStruct")


class PackedStruct:
    """Base for fixed-layout little-endian structures.

    Subclasses are dataclasses whose field order matches STRUCT_FMT.
    """

    STRUCT_FMT: ClassVar[str]
    SIZE: ClassVar[int]

    @classmethod
    def from_bytes(cls: type[_T], data: bytes | bytearray, offset: int = 0) -> _T:
        """Parse structure from binary data."""
        if len(data) < offset + cls.SIZE:
            raise ValueError(
                f"Data too short for {cls.__name__}: {len(data)} < {offset + cls.SIZE}"
            )
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    def to_bytes(self) -> bytes:
        """Serialize structure to binary data."""
        return struct.pack(self.STRUCT_FMT, *astuple(self))

    def write_to(self, data: bytearray, offset: int = 0) -> None:
        """Write structure to mutable buffer at offset."""
        struct.pack_into(self.STRUCT_FMT, data, offset, *astuple(self))


@dataclass
class DosHeader(PackedStruct):
    """DOS MZ header (IMAGE_DOS_HEADER).

    The DOS header is 64 bytes and exists for backwards compatibility.
    The only field the loader really cares about is e_lfanew which
    points to the PE signature.
    """

    e_magic: int  # "MZ" = 0x5A4D
    e_cblp: int
    e_cp: int
    e_crlc: int
    e_cparhdr: int
    e_minalloc: int
    e_maxalloc: int
    e_ss: int
    e_sp: int
    e_csum: int
    e_ip: int
    e_cs: int
    e_lfarlc: int
    e_ovno: int
    e_res: bytes  # 8 bytes reserved
    e_oemid: int
    e_oeminfo: int
    e_res2: bytes  # 20 bytes reserved
    e_lfanew: int  # Offset to PE signature

    STRUCT_FMT: ClassVar[str] = "<HHHHHHHHHHHHHH8sHH20sI"
    SIZE: ClassVar[int] = DOS_HEADER_SIZE

    @classmethod
    def from_bytes(cls, data: bytes | bytearray, offset: int = 0) -> "DosHeader":
        """Parse DOS header, rejecting anything without the MZ magic."""
        header = super().from_bytes(data, offset)
        if header.e_magic != DOS_MAGIC:
            raise ValueError(f"Not a DOS/PE file (bad magic: 0x{header.e_magic:04X})")
        return header

    @classmethod
    def blank(cls, e_lfanew: int = 0) -> "DosHeader":
        """Create a DOS header with only the magic and e_lfanew set."""
        return cls(DOS_MAGIC, *([0] * 13), bytes(8), 0, 0, bytes(20), e_lfanew)


@dataclass
class FileHeader(PackedStruct):
    """COFF file header (IMAGE_FILE_HEADER).

    This 20-byte header comes right after the PE signature.
    """

    Machine: int
    NumberOfSections: int
    TimeDateStamp: int
    PointerToSymbolTable: int  # File offset of COFF symbols, 0 if none
    NumberOfSymbols: int
    SizeOfOptionalHeader: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<HHIIIHH"
    SIZE: ClassVar[int] = FILE_HEADER_SIZE

    @classmethod
    def blank(cls) -> "FileHeader":
        return cls(IMAGE_FILE_MACHINE_UNKNOWN, 0, 0, 0, 0, 0, 0)

    @property
    def is_dll(self) -> bool:
        """Check if this is a DLL."""
        return bool(self.Characteristics & IMAGE_FILE_DLL)

    @property
    def string_table_offset(self) -> int:
        """File offset of the COFF string table, or 0 if there is none."""
        if self.PointerToSymbolTable == 0:
            return 0
        return self.PointerToSymbolTable + self.NumberOfSymbols * COFF_SYMBOL_SIZE


@dataclass
class DataDirectory(PackedStruct):
    """Data directory entry (IMAGE_DATA_DIRECTORY)."""

    VirtualAddress: int  # RVA of the data
    Size: int

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = DATA_DIRECTORY_SIZE

    @property
    def is_present(self) -> bool:
        """Check if this data directory is present."""
        return self.VirtualAddress != 0 or self.Size != 0

    def contains_rva(self, rva: int) -> bool:
        return self.VirtualAddress <= rva < self.VirtualAddress + self.Size


@dataclass
class OptionalHeader32(PackedStruct):
    """PE32 optional header (IMAGE_OPTIONAL_HEADER32).

    Pointer-sized fields (ImageBase, stack/heap sizes) are 4 bytes wide
    and there is an extra BaseOfData field compared to PE32+.
    Data directories are stored separately.
    """

    Magic: int  # 0x10B
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    BaseOfData: int
    ImageBase: int
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int
    SizeOfStackCommit: int
    SizeOfHeapReserve: int
    SizeOfHeapCommit: int
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII"
    SIZE: ClassVar[int] = OPTIONAL_HEADER32_SIZE
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR32_MAGIC
    BITS: ClassVar[int] = 32

    @classmethod
    def blank(cls) -> "OptionalHeader32":
        """Zeroed header carrying the PE32 magic and default alignments."""
        header = cls(cls.MAGIC, *([0] * 29))
        header.ImageBase = IMAGE_BASE_DEFAULT
        header.SectionAlignment = SECTION_ALIGNMENT_DEFAULT
        header.FileAlignment = FILE_ALIGNMENT_DEFAULT
        return header


@dataclass
class OptionalHeader64(PackedStruct):
    """PE32+ optional header (IMAGE_OPTIONAL_HEADER64).

    This header is required for executable images despite its name.
    The "optional" refers to object files which don't have it.
    """

    Magic: int  # 0x20B
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    ImageBase: int  # 8 bytes for PE32+
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int  # 8 bytes for PE32+
    SizeOfStackCommit: int  # 8 bytes for PE32+
    SizeOfHeapReserve: int  # 8 bytes for PE32+
    SizeOfHeapCommit: int  # 8 bytes for PE32+
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    # 2 + 1 + 1 + 4*5 + 8 + 4*2 + 2*6 + 4*4 + 2*2 + 8*4 + 4*2 = 112 bytes
    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIQIIHHHHHHIIIIHHQQQQII"
    SIZE: ClassVar[int] = OPTIONAL_HEADER64_SIZE
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR64_MAGIC
    BITS: ClassVar[int] = 64

    @classmethod
    def blank(cls) -> "OptionalHeader64":
        """Zeroed header carrying the PE32+ magic and default alignments."""
        header = cls(cls.MAGIC, *([0] * 28))
        header.ImageBase = IMAGE_BASE_DEFAULT
        header.SectionAlignment = SECTION_ALIGNMENT_DEFAULT
        header.FileAlignment = FILE_ALIGNMENT_DEFAULT
        return header


OptionalHeader = OptionalHeader32 | OptionalHeader64

OPTIONAL_HEADER_BY_MAGIC: dict[int, type[OptionalHeader32] | type[OptionalHeader64]] = {
    IMAGE_NT_OPTIONAL_HDR32_MAGIC: OptionalHeader32,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC: OptionalHeader64,
}


@dataclass
class SectionHeader(PackedStruct):
    """PE/COFF section header (IMAGE_SECTION_HEADER).

    Each section header is 40 bytes.
    """

    Name: bytes  # 8 bytes, null-padded (NOT null-terminated if 8 chars)
    VirtualSize: int  # Size in memory (can be > SizeOfRawData)
    VirtualAddress: int  # RVA of section
    SizeOfRawData: int  # Size in file (rounded to FileAlignment)
    PointerToRawData: int  # File offset
    PointerToRelocations: int
    PointerToLinenumbers: int
    NumberOfRelocations: int
    NumberOfLinenumbers: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<8sIIIIIIHHI"
    SIZE: ClassVar[int] = SECTION_HEADER_SIZE

    @property
    def name_bytes(self) -> bytes:
        """Short name with the null padding stripped."""
        null_pos = self.Name.find(b"\x00")
        if null_pos >= 0:
            return self.Name[:null_pos]
        return self.Name

    @property
    def name_str(self) -> str:
        """Get section name as string (strips null padding)."""
        return self.name_bytes.decode("ascii", errors="replace")

    @property
    def is_name_safe(self) -> bool:
        """True when every name byte is printable ASCII."""
        return all(0x20 <= b < 0x7F for b in self.name_bytes)


@dataclass
class BaseRelocationBlock(PackedStruct):
    """Base relocation block header.

    The base relocation table consists of blocks, each covering a 4KB page.
    Each block has this header followed by TypeOffset entries.
    """

    PageRVA: int
    BlockSize: int  # Size including header and all entries

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = 8

    @property
    def num_entries(self) -> int:
        """Number of TypeOffset entries in this block."""
        return (self.BlockSize - self.SIZE) // 2


@dataclass
class BaseRelocationEntry(PackedStruct):
    """Single base relocation entry (2 bytes).

    High 4 bits are the relocation type, low 12 bits the offset within
    the page.
    """

    raw: int

    STRUCT_FMT: ClassVar[str] = "<H"
    SIZE: ClassVar[int] = 2

    @property
    def reloc_type(self) -> int:
        return self.raw >> 12

    @property
    def offset(self) -> int:
        return self.raw & 0xFFF

    @property
    def is_absolute(self) -> bool:
        """Check if this is a padding/skip entry."""
        return self.reloc_type == IMAGE_REL_BASED_ABSOLUTE


@dataclass
class ExportDirectory(PackedStruct):
    """Export directory table (IMAGE_EXPORT_DIRECTORY), 40 bytes."""

    Characteristics: int
    TimeDateStamp: int
    MajorVersion: int
    MinorVersion: int
    Name: int  # RVA of the DLL name
    Base: int  # First ordinal
    NumberOfFunctions: int
    NumberOfNames: int
    AddressOfFunctions: int
    AddressOfNames: int
    AddressOfNameOrdinals: int

    STRUCT_FMT: ClassVar[str] = "<IIHHIIIIIII"
    SIZE: ClassVar[int] = 40


@dataclass
class ImportDescriptor(PackedStruct):
    """Import directory entry (IMAGE_IMPORT_DESCRIPTOR), 20 bytes."""

    OriginalFirstThunk: int  # RVA of the import lookup table
    TimeDateStamp: int
    ForwarderChain: int
    Name: int  # RVA of the DLL name
    FirstThunk: int  # RVA of the import address table

    STRUCT_FMT: ClassVar[str] = "<IIIII"
    SIZE: ClassVar[int] = 20

    @property
    def is_terminator(self) -> bool:
        """The table ends with an all-zero descriptor."""
        return self.Name == 0 and self.OriginalFirstThunk == 0 and self.FirstThunk == 0


# =============================================================================
# Helper Functions
# =============================================================================


def round_up_to_alignment(value: int, alignment: int) -> int:
    """Round value up to next alignment boundary."""
    if alignment == 0:
        return value
    return (value + alignment - 1) // alignment * alignment


def bits_from_magic(magic: int) -> int:
    """Image bit-width for an optional header magic: 32, 64 or 0 if unknown."""
    header_type = OPTIONAL_HEADER_BY_MAGIC.get(magic)
    return header_type.BITS if header_type is not None else 0


def section_name_to_bytes(name: str) -> bytes:
    """Convert section name string to 8-byte padded bytes."""
    if len(name) > SECTION_NAME_SIZE:
        raise ValueError(f"Section name too long (max 8 chars): {name}")
    return name.encode("ascii").ljust(SECTION_NAME_SIZE, b"\x00")
