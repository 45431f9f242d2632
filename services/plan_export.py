from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from services import capacity

PLAN_HEADERS = [
    "Lorry",
    "Run",
    "Seq",
    "Job",
    "Customer",
    "Delivery Location",
    "Postcode",
    "ETA",
    "Pallets",
    "Weight (kg)",
    "Reload",
    "Missing Pallets",
]

CAPACITY_HEADERS = [
    "Lorry",
    "Class",
    "Status",
    "Capacity Pallets",
    "Run 1 Pallets",
    "Run 1 %",
    "Run 2 Pallets",
    "Run 2 %",
    "Capacity Weight (kg)",
    "Run 1 Weight",
    "Run 2 Weight",
    "Over Capacity",
]

BAND_FILLS = {
    capacity.BAND_NOMINAL: PatternFill(fill_type="solid", fgColor="FFDCFCE7"),
    capacity.BAND_WARNING: PatternFill(fill_type="solid", fgColor="FFFDE68A"),
    capacity.BAND_CRITICAL: PatternFill(fill_type="solid", fgColor="FFFECACA"),
}


def _style_header(row, header_fill, header_font, border):
    for cell in row:
        cell.fill = header_fill
        cell.font = header_font
        cell.border = border
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _run_positions(lorry):
    """1-based position of each assignment within its own run, in stored order."""

    positions = {}
    counters = {}
    for assignment in lorry.get("assignments") or []:
        run = capacity.run_for(assignment.get("is_reload"))
        counters[run] = counters.get(run, 0) + 1
        positions[assignment.get("id")] = counters[run]
    return positions


def _write_plan_sheet(ws, board, border, body_font):
    for lorry in board:
        positions = _run_positions(lorry)
        for run_key in ("run1_groups", "run2_groups"):
            run_label = "Run 1" if run_key == "run1_groups" else "Run 2 (reload)"
            for group in lorry.get(run_key) or []:
                for assignment in group["assignments"]:
                    sequence = positions.get(assignment.get("id"))
                    consignment = assignment.get("consignment") or {}
                    ws.append(
                        [
                            lorry.get("name") or "",
                            run_label,
                            sequence,
                            assignment.get("consignment_id") or "",
                            consignment.get("customer_name_raw") or "",
                            group["location_name"],
                            consignment.get("postcode") or "",
                            consignment.get("eta_iso") or "TBC",
                            assignment.get("effective_pallets") or 0,
                            assignment.get("effective_weight") or 0,
                            "YES" if assignment.get("display_reload") else "NO",
                            "YES" if assignment.get("missing_pallets") else "NO",
                        ]
                    )
                    for cell in ws[ws.max_row]:
                        cell.border = border
                        cell.font = body_font


def _write_capacity_sheet(ws, board, border, body_font):
    for lorry in board:
        state = lorry["capacity"]
        run1 = state["run1"]
        run2 = state["run2"]
        over = run1["over_capacity"] or run2["over_capacity"]
        ws.append(
            [
                lorry.get("name") or "",
                lorry.get("truck_class") or "",
                (lorry.get("status") or "on").upper(),
                state["capacity_pallets"],
                run1["used_pallets"],
                round(run1["pallets_pct"], 1),
                run2["used_pallets"],
                round(run2["pallets_pct"], 1),
                state["capacity_weight"],
                run1["used_weight"],
                run2["used_weight"],
                "YES" if over else "NO",
            ]
        )
        row = ws[ws.max_row]
        for cell in row:
            cell.border = border
            cell.font = body_font
        row[5].fill = BAND_FILLS[run1["pallets_band"]]
        row[7].fill = BAND_FILLS[run2["pallets_band"]]


def build_plan_workbook(board, transport_date=None):
    """Daily plan: one row per job by lorry and run, plus a capacity summary."""

    workbook = Workbook()
    plan = workbook.active
    plan.title = "Plan"

    header_fill = PatternFill(fill_type="solid", fgColor="FFE5E7EB")
    header_font = Font(bold=True, color="FF1F2937")
    body_font = Font(color="FF111827")
    thin_side = Side(style="thin", color="FFCBD5E1")
    all_border = Border(left=thin_side, right=thin_side, top=thin_side, bottom=thin_side)

    if transport_date:
        plan.append([f"Transport date: {transport_date}"])
        plan[1][0].font = header_font
    plan.append(PLAN_HEADERS)
    _style_header(plan[plan.max_row], header_fill, header_font, all_border)
    _write_plan_sheet(plan, board, all_border, body_font)
    for col_letter, width in zip("ABCDEFGHIJKL", (18, 14, 6, 16, 28, 28, 10, 20, 9, 12, 9, 16)):
        plan.column_dimensions[col_letter].width = width

    summary = workbook.create_sheet("Capacity")
    summary.append(CAPACITY_HEADERS)
    _style_header(summary[1], header_fill, header_font, all_border)
    _write_capacity_sheet(summary, board, all_border, body_font)
    for col_letter in "ABCDEFGHIJKL":
        summary.column_dimensions[col_letter].width = 16
    return workbook
