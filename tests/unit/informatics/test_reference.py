import gzip

import pytest

import solokit.informatics.reference as reference
from solokit.informatics.reference import (
    build_star_index_command,
    download_and_decompress,
    filter_gtf,
    gene_allowlist,
    masks_chry_par,
    resolve_genome,
    resolve_reference_sources,
)


def _gtf_line(chrom, feature, start, gene_id, gene_type, transcript_type=None, tags=()):
    attrs = f'gene_id "{gene_id}"; gene_type "{gene_type}";'
    if transcript_type:
        attrs += f' transcript_type "{transcript_type}";'
    for tag in tags:
        attrs += f' tag "{tag}";'
    return "\t".join([chrom, "HAVANA", feature, str(start), str(start + 100), ".", "+", ".", attrs]) + "\n"


@pytest.fixture
def gtf(tmp_path):
    path = tmp_path / "annotation.gtf"
    path.write_text(
        "##description: test\n"
        + _gtf_line("chr1", "gene", 100, "ENSG01.1", "protein_coding")
        + _gtf_line("chr1", "transcript", 100, "ENSG01.1", "protein_coding", "protein_coding")
        + _gtf_line("chr1", "exon", 100, "ENSG01.1", "protein_coding", "protein_coding")
        + _gtf_line("chr1", "gene", 500, "ENSG02.1", "protein_coding")
        + _gtf_line("chr1", "transcript", 500, "ENSG02.1", "protein_coding", "protein_coding", ("readthrough_transcript",))
        + _gtf_line("chr2", "gene", 900, "ENSG03.1", "misc_RNA")
        + _gtf_line("chr2", "transcript", 900, "ENSG03.1", "misc_RNA", "misc_RNA")
        + _gtf_line("chr2", "transcript", 950, "ENSG011.1", "lncRNA", "retained_intron")
        + _gtf_line("chrY", "gene", 100, "ENSG04.1", "lncRNA")
        + _gtf_line("chrY", "transcript", 100, "ENSG04.1", "lncRNA", "lncRNA")
        + _gtf_line("chrY", "transcript", 3_000_000, "ENSG04.1", "lncRNA", "lncRNA")
    )
    return path


def test_resolve_genome_species_shortcuts():
    assert resolve_genome(species="human") == ("GRCh38", "48")
    assert resolve_genome(species="mouse") == ("GRCm39", "M37")
    assert resolve_genome("GRCh38", 44) == ("GRCh38", "44")


def test_resolve_genome_requires_genome_and_version():
    with pytest.raises(ValueError, match="Must specify genome and version"):
        resolve_genome("GRCh38")
    with pytest.raises(ValueError, match="Invalid species"):
        resolve_genome(species="rat")


def test_resolve_reference_sources_mouse(tmp_path):
    sources = resolve_reference_sources("GRCm39", "M37", tmp_path)
    base = "https://ftp.ebi.ac.uk/pub/databases/gencode/Gencode_mouse/release_M37"
    assert sources.fasta_url == f"{base}/GRCm39.primary_assembly.genome.fa.gz"
    assert sources.gtf_url == f"{base}/gencode.vM37.primary_assembly.annotation.gtf.gz"
    assert sources.gtf == tmp_path / "gencode.vM37.primary_assembly.annotation.gtf"


def test_resolve_reference_sources_unsupported(tmp_path):
    with pytest.raises(ValueError, match="Unsupported genome"):
        resolve_reference_sources("R64", "1", tmp_path)


def test_gene_allowlist_excludes_readthrough_and_other_biotypes(gtf):
    assert gene_allowlist(gtf) == {"ENSG01.1", "ENSG04.1"}


def test_masks_chry_par():
    assert masks_chry_par("GRCh38", "44")
    assert not masks_chry_par("GRCh38", "43")
    assert not masks_chry_par("GRCm39", "M37")


def test_filter_gtf_keeps_headers_and_allowed_genes(gtf, tmp_path):
    out = filter_gtf(gtf, tmp_path / "filtered.gtf", "GRCm39", "M37")
    lines = out.read_text().splitlines()

    assert lines[0] == "##description: test"
    gene_lines = [line for line in lines[1:]]
    assert all('"ENSG01.1"' in line or '"ENSG04.1"' in line for line in gene_lines)
    assert len(gene_lines) == 6


def test_filter_gtf_masks_chry_par_for_recent_grch38(gtf, tmp_path):
    out = filter_gtf(gtf, tmp_path / "filtered.gtf", "GRCh38", "48")
    chry = [line for line in out.read_text().splitlines() if line.startswith("chrY")]

    assert len(chry) == 1
    assert "\t3000000\t" in chry[0]


def test_build_star_index_command(tmp_path):
    cmd = build_star_index_command("g.fa", "a.gtf", tmp_path, threads=6)
    assert cmd[:5] == ["STAR", "--runThreadN", "6", "--runMode", "genomeGenerate"]
    assert cmd[cmd.index("--genomeDir") + 1] == str(tmp_path)
    assert cmd[cmd.index("--sjdbGTFfile") + 1] == "a.gtf"


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload
        self.headers = {"Content-Length": str(len(payload))}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i : i + chunk_size]


def test_download_and_decompress(tmp_path, monkeypatch):
    payload = gzip.compress(b">chr1\nACGT\n")
    urls = []

    def fake_get(url, stream=False, timeout=None):
        urls.append(url)
        return FakeResponse(payload)

    monkeypatch.setattr(reference.requests, "get", fake_get)
    dest = download_and_decompress("https://example.org/g.fa.gz", tmp_path / "g.fa", chunk=4)

    assert dest.read_text() == ">chr1\nACGT\n"
    assert not (tmp_path / "g.fa.gz.part").exists()

    download_and_decompress("https://example.org/g.fa.gz", dest)
    assert urls == ["https://example.org/g.fa.gz"]
