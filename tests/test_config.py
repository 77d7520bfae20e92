import pytest

from snp_impute.config import ConfigError, load_config


class TestLoadConfig:
    def test_yaml_mapping(self, tmp_path):
        path = tmp_path / "a.yaml"
        path.write_text("snp: rs1\nchromosome: 22\npaths:\n  reference_dir: refs\n")

        config = load_config(path)

        assert config.get("snp") == "rs1"
        assert config.get("chromosome") == 22
        assert config.path("paths", "reference_dir") == tmp_path.resolve() / "refs"
        assert config.root == tmp_path.resolve()

    def test_project_root_is_relative_to_config(self, tmp_path):
        (tmp_path / "config").mkdir()
        path = tmp_path / "config" / "a.yaml"
        path.write_text("project_root: ..\nsnp: rs1\n")

        assert load_config(path).root == tmp_path.resolve()

    def test_legacy_shell_assignments(self, tmp_path):
        path = tmp_path / "a.config"
        path.write_text(
            "# imputation config\n"
            "SNP=rs7412\n"
            "CHROMOSOME=19\n"
            "export POSITION=45412079\n"
            "WINDOW_SIZE=500000  # half width\n"
            "REFHAPS='19.1000g.m3vcf.gz'\n"
        )

        config = load_config(path)

        assert config.get("SNP") == "rs7412"
        assert config.get("POSITION") == "45412079"
        assert config.get("WINDOW_SIZE") == "500000"
        assert config.get("REFHAPS") == "19.1000g.m3vcf.gz"

    def test_unknown_keys_are_kept_and_ignored(self, tmp_path):
        path = tmp_path / "a.yaml"
        path.write_text("snp: rs1\nsomething_else: 3\n")

        assert load_config(path).first("snp", "SNP") == "rs1"

    def test_first_skips_blank_values(self, tmp_path):
        path = tmp_path / "a.yaml"
        path.write_text("snp: ''\nSNP: rs9\n")

        assert load_config(path).first("snp", "SNP") == "rs9"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "a.yaml"
        path.write_text("- rs1\n- rs2\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "a.yaml"
        path.write_text("snp: [rs1\n")

        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(path)


class TestLegacyVariableExpansion:
    def test_references_to_earlier_keys(self, tmp_path):
        path = tmp_path / "a.config"
        path.write_text('CHROMOSOME=19\nREFHAPS="${CHROMOSOME}.1000g.m3vcf.gz"\nMAP=chr$CHROMOSOME.txt\n')

        config = load_config(path)

        assert config.get("REFHAPS") == "19.1000g.m3vcf.gz"
        assert config.get("MAP") == "chr19.txt"

    def test_environment_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PANEL_DIR", "/data/panels")
        path = tmp_path / "a.config"
        path.write_text("REFHAPS=${PANEL_DIR}/19.m3vcf.gz\n")

        assert load_config(path).get("REFHAPS") == "/data/panels/19.m3vcf.gz"

    def test_single_quotes_stay_literal(self, tmp_path):
        path = tmp_path / "a.config"
        path.write_text("CHROMOSOME=19\nREFHAPS='${CHROMOSOME}.m3vcf.gz'\n")

        assert load_config(path).get("REFHAPS") == "${CHROMOSOME}.m3vcf.gz"

    def test_unresolved_reference(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_DEFINED_ANYWHERE", raising=False)
        path = tmp_path / "a.config"
        # Defined only after it is used, as bash would also leave it empty.
        path.write_text("REFHAPS=${NOT_DEFINED_ANYWHERE}.m3vcf.gz\nNOT_DEFINED_ANYWHERE=19\n")

        with pytest.raises(ConfigError, match=r"NOT_DEFINED_ANYWHERE.*REFHAPS"):
            load_config(path)
