"""
Exporters Module
Handles exporting the EUR cash ledger and portfolio valuation to Excel, HTML, and CSV.
"""
import pandas as pd
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import datetime
from jinja2 import Environment, FileSystemLoader

logger = logging.getLogger(__name__)

class Exporter:
    """Base class for exporters."""
    def __init__(self, config: Dict[str, Any]):
        self.export_path = Path(config.get("exports", {}).get("path", "data/exports/"))
        self.config = config.get("exports", {})
        self.export_path.mkdir(parents=True, exist_ok=True)
        self.timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")

    def _get_filepath(self, name_prefix: str, extension: str) -> Path:
        """Generate a timestamped filepath."""
        return self.export_path / f"{name_prefix}_{self.timestamp}.{extension}"

    def _format_enabled(self, name: str) -> bool:
        return self.config.get("formats", {}).get(name, {}).get("enabled", True)

    def export(self, ledger_df: pd.DataFrame, summary: Dict[str, Any], portfolio_df: Optional[pd.DataFrame] = None) -> Optional[Path]:
        """Main export method to be implemented by subclasses."""
        raise NotImplementedError

class ExcelExporter(Exporter):
    """Exports data to an Excel file."""
    def export(self, ledger_df, summary, portfolio_df=None):
        """Exports the ledger, portfolio and summary to one workbook."""
        if not self._format_enabled("excel"): logger.info("Excel export is disabled."); return None
        filepath = self._get_filepath("cash_ledger", "xlsx")
        with pd.ExcelWriter(filepath, engine='xlsxwriter') as writer:
            pd.DataFrame({"Metric": list(summary.keys()), "Value": [str(v) for v in summary.values()]}).to_excel(writer, sheet_name='Summary', index=False)
            ledger_df.to_excel(writer, sheet_name='Ledger', index=False)
            if portfolio_df is not None: portfolio_df.to_excel(writer, sheet_name='Portfolio', index=False)
        logger.info(f"Excel report exported successfully to: {filepath}")
        return filepath

class HtmlExporter(Exporter):
    """Exports data to an HTML file."""
    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        templates_path = Path(__file__).parent / "templates"
        self.jinja_env = Environment(loader=FileSystemLoader(templates_path), autoescape=True)

    def export(self, ledger_df, summary, portfolio_df=None):
        """Renders templates/ledger_template.html with the ledger and portfolio tables."""
        if not self._format_enabled("html"): logger.info("HTML export is disabled."); return None
        filepath = self._get_filepath("cash_ledger", "html")
        template = self.jinja_env.get_template("ledger_template.html")
        html_content = template.render(
            summary=summary,
            ledger_rows=ledger_df.to_dict(orient="records"),
            portfolio_rows=portfolio_df.to_dict(orient="records") if portfolio_df is not None else [],
            timestamp=datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )
        with open(filepath, 'w', encoding='utf-8') as f: f.write(html_content)
        logger.info(f"HTML report exported successfully to: {filepath}")
        return filepath

class CsvExporter(Exporter):
    """Exports data to CSV files."""
    def export(self, ledger_df, summary, portfolio_df=None):
        """Writes the ledger (and portfolio, when given) as CSV backups."""
        if not self._format_enabled("csv"): logger.info("CSV export is disabled."); return None
        filepath = self._get_filepath("cash_ledger", "csv")
        ledger_df.to_csv(filepath, index=False)
        logger.info(f"Ledger CSV exported to: {filepath}")
        if portfolio_df is not None:
            portfolio_path = self._get_filepath("portfolio", "csv"); portfolio_df.to_csv(portfolio_path, index=False)
            logger.info(f"Portfolio CSV exported to: {portfolio_path}")
        return filepath

EXPORTERS = {"excel": ExcelExporter, "html": HtmlExporter, "csv": CsvExporter}
