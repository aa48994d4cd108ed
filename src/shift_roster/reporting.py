"""
Reporting and Export Module for Shift Roster

Handles Excel, CSV and PDF export of finished schedules together with
the daily and per-staff shift statistics.
"""

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, PageBreak
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from datetime import datetime, date
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging

from .data_manager import DataManager, Person, Rules, ScheduleEntry, ShiftDefinition, DATE_FORMAT
from .scheduler_logic import ScheduleResult, date_range
from .schedule_views import daily_shift_counts, shift_colors, staff_shift_counts

logger = logging.getLogger(__name__)

FIXED_COLUMNS = ["Name", "ID", "Group"]
FILE_EXTENSIONS = {"excel": "xlsx", "csv": "csv", "pdf": "pdf"}


def _column_label(day: date) -> str:
    return day.strftime("%m-%d")


def _excel_color(hex_color: str) -> str:
    return hex_color.lstrip("#").upper()


class ReportGenerator:
    """Main class for generating reports and exports"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom report styles"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            spaceAfter=20,
            alignment=1  # Center alignment
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceAfter=12
        ))

    def _load_roster(self, start: date, end: date, schedule_result: Optional[ScheduleResult] = None
                     ) -> Tuple[Dict[str, ScheduleEntry], List[Person], List[ShiftDefinition], Rules]:
        """Schedule to export (the given result, else the stored one) plus the data needed to render it"""
        persons = self.data_manager.load_staff()
        shifts = self.data_manager.load_shift_definitions()
        rules = self.data_manager.load_rules()

        if schedule_result is not None:
            return schedule_result.person_schedule, persons, shifts, rules

        by_name = {person.name: person for person in persons}
        person_schedule = {}
        for person_name, days in self.data_manager.get_schedule(start, end).items():
            person = by_name.get(person_name, Person(person_name))
            person_schedule[person_name] = ScheduleEntry(
                name=person_name, employee_id=person.employee_id, group=person.group, shifts=days
            )

        # Keep roster order, then anyone no longer on the staff list
        ordered = {name: person_schedule[name] for name in by_name if name in person_schedule}
        ordered.update(person_schedule)
        return ordered, persons, shifts, rules

    def _create_schedule_dataframe(self, person_schedule: Dict[str, ScheduleEntry],
                                   start: date, end: date) -> pd.DataFrame:
        """One row per person: Name, ID, Group, then one MM-dd column per date"""
        days = list(date_range(start, end))
        data = []
        for entry in person_schedule.values():
            row = {"Name": entry.name, "ID": entry.employee_id, "Group": entry.group}
            for day in days:
                row[_column_label(day)] = entry.shifts.get(day.strftime(DATE_FORMAT), "")
            data.append(row)

        return pd.DataFrame(data, columns=FIXED_COLUMNS + [_column_label(day) for day in days])

    def _create_daily_statistics_dataframe(self, person_schedule: Dict[str, ScheduleEntry],
                                           rules: Rules) -> pd.DataFrame:
        counts = daily_shift_counts(person_schedule, rules)
        data = []
        for shift_name, by_date in counts.items():
            row = {"Shift": shift_name}
            for date_str, count in by_date.items():
                row[datetime.strptime(date_str, DATE_FORMAT).strftime("%m-%d")] = count
            data.append(row)
        return pd.DataFrame(data)

    def _create_staff_statistics_dataframe(self, person_schedule: Dict[str, ScheduleEntry],
                                           shifts: List[ShiftDefinition], rules: Rules) -> pd.DataFrame:
        counts = staff_shift_counts(person_schedule, shifts, rules)
        data = []
        for person_name, by_shift in counts.items():
            row = {"Name": person_name}
            row.update(by_shift)
            data.append(row)
        return pd.DataFrame(data)

    def export_schedule_excel(self, start: date, end: date, output_path: str,
                              schedule_result: Optional[ScheduleResult] = None) -> bool:
        """Export schedule to Excel: roster, daily statistics and staff statistics sheets"""
        try:
            person_schedule, persons, shifts, rules = self._load_roster(start, end, schedule_result)

            with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
                schedule_df = self._create_schedule_dataframe(person_schedule, start, end)
                schedule_df.to_excel(writer, sheet_name='Schedule', index=False)

                daily_df = self._create_daily_statistics_dataframe(person_schedule, rules)
                daily_df.to_excel(writer, sheet_name='Daily Statistics', index=False)

                staff_df = self._create_staff_statistics_dataframe(person_schedule, shifts, rules)
                staff_df.to_excel(writer, sheet_name='Staff Statistics', index=False)

                self._format_excel_worksheets(writer, shift_colors(shifts, rules))

            logger.info(f"Exported schedule for {start} to {end} to {output_path}")
            return True

        except Exception as e:
            logger.error(f"Error exporting to Excel: {e}", exc_info=True)
            return False

    def _format_excel_worksheets(self, writer, colors_by_shift: Dict[str, str]):
        """Header styling on every sheet, shift colors on the roster cells"""
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(color="FFFFFF", bold=True)
        shift_fills = {
            shift_name: PatternFill(start_color=_excel_color(color), end_color=_excel_color(color), fill_type="solid")
            for shift_name, color in colors_by_shift.items()
        }

        for sheet_name, worksheet in writer.sheets.items():
            for cell in worksheet[1]:
                cell.fill = header_fill
                cell.font = header_font

            if sheet_name == 'Schedule':
                for row in worksheet.iter_rows(min_row=2, min_col=len(FIXED_COLUMNS) + 1):
                    for cell in row:
                        fill = shift_fills.get(cell.value)
                        if fill is not None:
                            cell.fill = fill
                        cell.alignment = Alignment(horizontal="center")

            # Auto-adjust column widths
            for column in worksheet.columns:
                max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
                worksheet.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

    def export_schedule_csv(self, start: date, end: date, output_path: str,
                            schedule_result: Optional[ScheduleResult] = None) -> bool:
        """Export schedule to CSV format"""
        try:
            person_schedule, _, _, _ = self._load_roster(start, end, schedule_result)
            schedule_df = self._create_schedule_dataframe(person_schedule, start, end)
            schedule_df.to_csv(output_path, index=False)
            return True

        except Exception as e:
            logger.error(f"Error exporting to CSV: {e}", exc_info=True)
            return False

    def export_schedule_pdf(self, start: date, end: date, output_path: str,
                            schedule_result: Optional[ScheduleResult] = None) -> bool:
        """Export the roster as a landscape table, followed by staff statistics"""
        try:
            person_schedule, _, shifts, rules = self._load_roster(start, end, schedule_result)

            doc = SimpleDocTemplate(
                output_path,
                pagesize=landscape(A4),
                rightMargin=0.4*inch,
                leftMargin=0.4*inch,
                topMargin=0.5*inch,
                bottomMargin=0.5*inch
            )

            story = []
            title = Paragraph(f"Shift Roster {start.strftime(DATE_FORMAT)} to {end.strftime(DATE_FORMAT)}",
                              self.styles['CustomTitle'])
            story.append(title)
            story.append(Spacer(1, 12))

            schedule_df = self._create_schedule_dataframe(person_schedule, start, end)
            story.append(self._create_roster_table(schedule_df, shift_colors(shifts, rules)))

            if person_schedule:
                story.append(PageBreak())
                story.append(Paragraph("Staff Statistics", self.styles['CustomHeading']))
                staff_df = self._create_staff_statistics_dataframe(person_schedule, shifts, rules)
                story.append(self._create_statistics_table(staff_df))

            doc.build(story)
            return True

        except Exception as e:
            logger.error(f"Error creating PDF: {e}", exc_info=True)
            return False

    def _create_roster_table(self, schedule_df: pd.DataFrame, colors_by_shift: Dict[str, str]) -> Table:
        data = [list(schedule_df.columns)] + schedule_df.astype(str).values.tolist()
        date_columns = max(len(schedule_df.columns) - len(FIXED_COLUMNS), 1)
        # Fit the date columns into what is left of the page width
        date_width = min(0.6*inch, (landscape(A4)[0] - 0.8*inch - 2.2*inch) / date_columns)
        table = Table(data, colWidths=[1.0*inch, 0.6*inch, 0.6*inch] + [date_width] * date_columns, repeatRows=1)

        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 6),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]
        for row_index, row in enumerate(data[1:], start=1):
            for col_index in range(len(FIXED_COLUMNS), len(row)):
                color = colors_by_shift.get(row[col_index])
                if color:
                    style.append(('BACKGROUND', (col_index, row_index), (col_index, row_index),
                                  colors.HexColor(color)))

        table.setStyle(TableStyle(style))
        return table

    def _create_statistics_table(self, staff_df: pd.DataFrame) -> Table:
        data = [list(staff_df.columns)]
        for row in staff_df.itertuples(index=False):
            data.append([row[0]] + [f"{value:g}" for value in row[1:]])

        table = Table(data, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        return table


class ExportManager:
    """Manager class for handling all export operations"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.report_generator = ReportGenerator(data_manager)

    def export(self, start: date, end: date, format_type: str, output_path: str,
               schedule_result: Optional[ScheduleResult] = None) -> bool:
        """Export schedule in specified format with optional ScheduleResult"""
        if format_type.lower() == 'pdf':
            return self.report_generator.export_schedule_pdf(start, end, output_path, schedule_result)
        elif format_type.lower() == 'excel':
            return self.report_generator.export_schedule_excel(start, end, output_path, schedule_result)
        elif format_type.lower() == 'csv':
            return self.report_generator.export_schedule_csv(start, end, output_path, schedule_result)
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    @staticmethod
    def format_for_path(output_path: str) -> str:
        """Export format implied by a file suffix"""
        suffix = Path(output_path).suffix.lower().lstrip(".")
        for format_type, extension in FILE_EXTENSIONS.items():
            if suffix == extension or (format_type == "excel" and suffix == "xls"):
                return format_type
        raise ValueError(f"Cannot infer export format from '{output_path}'")

    def get_default_filename(self, start: date, end: date, format_type: str) -> str:
        """Generate default filename for export"""
        extension = FILE_EXTENSIONS.get(format_type.lower(), format_type.lower())
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        return f"shift_roster_{start:%Y%m%d}_{end:%Y%m%d}_{timestamp}.{extension}"

    def batch_export(self, start: date, end: date, output_dir: str,
                     formats: List[str] = None, schedule_result: Optional[ScheduleResult] = None) -> Dict[str, bool]:
        """Export schedule in multiple formats"""
        if formats is None:
            formats = ['pdf', 'excel', 'csv']

        results = {}
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        for format_type in formats:
            filename = self.get_default_filename(start, end, format_type)
            file_path = output_path / filename

            try:
                results[format_type] = self.export(start, end, format_type, str(file_path), schedule_result)
            except ValueError as e:
                logger.error(f"Error exporting {format_type}: {e}", exc_info=True)
                results[format_type] = False

        return results
