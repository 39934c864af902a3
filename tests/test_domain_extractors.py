from bs4 import BeautifulSoup

from pipelines.domain_extractors import (ExamListingExtractor, LineItem, SiteFamilyRegistry,
                                         default_registry, render_items)


class TestLineItem:
    """Test rendering of structured listing entries."""

    def test_render_full_item(self):
        """All known fields render in a fixed order."""
        item = LineItem(name="Analista", text="...", link="https://x.org/a", vacancies="10", salary="R$ 5.000,00")
        assert item.render() == "Analista | Vagas: 10 | Salário: R$ 5.000,00 | Link: https://x.org/a"

    def test_render_name_only(self):
        """Missing fields are omitted."""
        assert LineItem(name="Técnico", text="...").render() == "Técnico"

    def test_render_items_one_per_line(self):
        items = [LineItem(name="A", text=""), LineItem(name="B", text="")]
        assert render_items(items) == "A\nB"


class TestExamListingExtractor:
    """Test the public-exam portal extractor."""

    def test_matches_hosts_and_subdomains(self):
        """Registered hosts match with or without www and subdomains."""
        extractor = ExamListingExtractor()
        assert extractor.matches("https://www.cebraspe.org.br/concursos")
        assert extractor.matches("https://conhecimento.fgv.br/concursos")
        assert not extractor.matches("https://example.org/concursos")
        assert not extractor.matches("https://notfgv.br/")

    def test_extracts_cards(self):
        """Each listing card becomes one item with vacancies, salary and link."""
        html = """
        <html><body>
          <div class="concurso-item">
            <h2>PREFEITURA MUNICIPAL DE SALVADOR</h2>
            <p>Concurso com 300 vagas para professor, remuneração de R$ 4.200,00.</p>
            <a href="/salvador">Detalhes</a>
          </div>
          <div class="concurso-item">
            <h2>BANCO DO BRASIL</h2>
            <p>Edital de seleção para escriturário com 2.000 vagas em todo o país.</p>
          </div>
          <div class="concurso-item"><p>Curto</p></div>
        </body></html>
        """
        url = "https://www.cebraspe.org.br/concursos"
        items = ExamListingExtractor().extract_items(BeautifulSoup(html, "html.parser"), url)

        assert [item.name for item in items] == ["PREFEITURA MUNICIPAL DE SALVADOR", "BANCO DO BRASIL"]
        assert items[0].vacancies == "300"
        assert items[0].salary == "R$ 4.200,00"
        assert items[0].link == "https://www.cebraspe.org.br/salvador"
        assert items[1].vacancies == "2.000"
        assert items[1].salary is None
        assert items[1].link == url

    def test_text_pattern_fallback(self):
        """Without listing containers, body text patterns find organisations."""
        html = """
        <html><body>
          <p>POLÍCIA FEDERAL 2025</p>
          <p>Edital publicado com 1.500 vagas para agente.</p>
        </body></html>
        """
        items = ExamListingExtractor().extract_items(BeautifulSoup(html, "html.parser"),
                                                     "https://www.cebraspe.org.br/")

        assert items
        assert items[0].name.startswith("POLÍCIA FEDERAL")
        assert items[0].vacancies == "1.500"

    def test_no_items_on_unrelated_page(self):
        """Pages without exam content produce nothing."""
        html = "<html><body><p>Bem-vindo ao portal.</p></body></html>"
        assert ExamListingExtractor().extract_items(BeautifulSoup(html, "html.parser"), "https://fgv.br/") == []


class TestSiteFamilyRegistry:
    """Test extractor lookup."""

    def test_default_registry(self):
        registry = default_registry()
        assert len(registry) == 1
        assert registry.find("https://www.vunesp.com.br/") is not None
        assert registry.find("https://example.org/") is None

    def test_register(self):
        """Extractors are tried in registration order."""
        registry = SiteFamilyRegistry()
        assert registry.find("https://fcc.org.br/") is None
        registry.register(ExamListingExtractor())
        assert registry.find("https://fcc.org.br/").name == "exam_listing"
