import asyncio
from io import BytesIO

import pytest
from PIL import Image
from pypdf import PdfReader, PdfWriter

from backend.binder.compression import ImageCompressor, recompress_image
from backend.binder.packing.collaborators import CompressionError
from backend.binder.packing.types import CompressionLevel, Item, ItemKind
from backend.binder.pdf_utils import A4_WIDTH, PdfAssembler


def write_image(path, size=(3000, 2000), color=(200, 120, 40)):
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


def write_pdf(path, pages=2):
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=300, height=400)
    with open(path, "wb") as handle:
        writer.write(handle)
    return path


def item_for(path, kind, **kwargs):
    return Item(
        item_id=path.name,
        name=path.name,
        kind=kind,
        raw_size=path.stat().st_size,
        source=str(path),
        **kwargs,
    )


@pytest.mark.parametrize(
    "level,max_width",
    [(CompressionLevel.LOW, 2500), (CompressionLevel.MEDIUM, 1600), (CompressionLevel.HIGH, 1024)],
)
def test_recompress_limits_width(tmp_path, level, max_width):
    data = write_image(tmp_path / "photo.png").read_bytes()
    with Image.open(BytesIO(recompress_image(data, level))) as image:
        assert image.format == "JPEG"
        assert image.width == max_width


def test_recompress_rejects_garbage():
    with pytest.raises(CompressionError):
        recompress_image(b"not an image", CompressionLevel.LOW)


def test_compressor_passes_pdfs_through(tmp_path):
    path = write_pdf(tmp_path / "letter.pdf")
    processed = asyncio.run(ImageCompressor().process(item_for(path, ItemKind.PDF), CompressionLevel.HIGH))
    assert processed.data == path.read_bytes()
    assert processed.size == path.stat().st_size


def test_compressor_reports_missing_source(tmp_path):
    item = Item(item_id="gone", name="gone.jpg", source=str(tmp_path / "gone.jpg"))
    with pytest.raises(CompressionError):
        asyncio.run(ImageCompressor().process(item, CompressionLevel.LOW))


def test_assembled_volume_holds_every_item(tmp_path):
    photo = item_for(write_image(tmp_path / "photo.png"), ItemKind.IMAGE, header_text="Grandma, 1962")
    letter = item_for(write_pdf(tmp_path / "letter.pdf", pages=2), ItemKind.PDF, description="Letter home")
    note = Item(item_id="note", name="note", kind=ItemKind.TEXT, header_text="Story", description="Once upon a time")
    compressor = ImageCompressor()

    data = asyncio.run(PdfAssembler(compressor).assemble([photo, letter, note], "Book (Part 1)", CompressionLevel.MEDIUM))

    reader = PdfReader(BytesIO(data))
    assert len(reader.pages) == 4
    assert reader.metadata.title == "Book (Part 1)"
    for page in reader.pages:
        assert float(page.mediabox.width) == pytest.approx(A4_WIDTH, abs=0.5)
    annotations = reader.pages[0].get("/Annots")
    assert annotations is not None and len(annotations) == 1


def test_unreadable_item_becomes_placeholder_page(tmp_path):
    good = item_for(write_image(tmp_path / "good.png", size=(400, 300)), ItemKind.IMAGE)
    broken = Item(item_id="broken", name="broken.jpg", source=str(tmp_path / "missing.jpg"))

    data = asyncio.run(PdfAssembler(ImageCompressor()).assemble([good, broken], "Book (Part 2)", CompressionLevel.LOW))

    reader = PdfReader(BytesIO(data))
    assert len(reader.pages) == 2
    assert reader.pages[1].get("/Annots") is not None


def test_assembly_is_deterministic_in_size(tmp_path):
    photo = item_for(write_image(tmp_path / "photo.png", size=(800, 600)), ItemKind.IMAGE)
    assembler = PdfAssembler(ImageCompressor())

    first = asyncio.run(assembler.assemble([photo], "Book (Part 1)", CompressionLevel.LOW))
    second = asyncio.run(assembler.assemble([photo], "Book (Part 1)", CompressionLevel.LOW))

    assert len(first) == len(second)
