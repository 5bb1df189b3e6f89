"""
pingboard_gui.py — PyQt6 frontend for pingboard.py (--json mode)
Requires: PyQt6
   pip install PyQt6

# Copyright (c) 2025 Charles Culver
# [GitHub](https://github.com/cculver78) • [Bluesky](https://bsky.app/profile/dhelmet78.bsky.social) • [Threads](https://www.threads.com/@cculver78)
# Licensed under the MIT License. See LICENSE file for details.
"""

import json, sys
from pathlib import Path
from typing import List

from PyQt6.QtCore import QProcess
from PyQt6.QtWidgets import (
    QApplication, QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QLineEdit,
    QTableWidget, QTableWidgetItem, QHeaderView, QMessageBox, QFileDialog, QLabel
)

SCRIPT_DIR = Path(__file__).resolve().parent
CLI_PATH = SCRIPT_DIR / "pingboard.py"

VERSION = "1.0.0"

COLUMNS = ["Name", "Address", "Packet Loss", "RTT Avg", "RTT Std Dev"]


def which_python() -> str:
    # Use the current interpreter to avoid venv surprises
    return sys.executable or "python3"


def parse_line(raw: str):
    """Return the ranked target list from a snapshot line, else None."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get("type") != "snapshot":
        return None
    return data.get("targets", [])


def export_lines(snapshot: List[dict]) -> List[str]:
    lines = ["pingboard Results", "=" * 20, ""]
    lines.append(f"{'Name':<24}{'Address':<24}{'Loss':>10}{'RTT Avg':>12}{'Std Dev':>12}")
    lines.append("-" * 82)
    for t in snapshot:
        name, addr, loss, avg, dev = t.get("row") or ["?", "", "--", "--", "--"]
        lines.append(f"{name:<24}{addr:<24}{loss:>10}{avg:>12}{dev:>12}")
        if t.get("error"):
            lines.append(f"    ! {t['error']}")
    return lines


class PingBoardGUI(QWidget):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("pingboard")
        self.resize(1000, 560)

        self.proc = None
        self.stopping = False
        self.last_snapshot = []  # last ranked targets from CLI

        # --- Target list picker ---
        self.path_edit = QLineEdit()
        self.path_edit.setPlaceholderText("Target list file (one 'name|address' per line)")
        self.browse_btn = QPushButton("Browse…")

        path_row = QHBoxLayout()
        path_row.addWidget(QLabel("Targets:"))
        path_row.addWidget(self.path_edit, 1)
        path_row.addWidget(self.browse_btn)

        # --- Buttons ---
        btn_row = QHBoxLayout()
        self.start_btn = QPushButton("Start")
        self.stop_btn  = QPushButton("Stop")
        self.quit_btn  = QPushButton("Quit")
        self.export_btn = QPushButton("Export Results")
        self.export_btn.setVisible(False)
        self.stop_btn.setEnabled(False)

        btn_row.addWidget(self.start_btn)
        btn_row.addWidget(self.stop_btn)
        btn_row.addWidget(self.export_btn)
        btn_row.addStretch()
        btn_row.addWidget(QLabel(f"Version: {VERSION}"))
        btn_row.addWidget(self.quit_btn)

        # --- Table ---
        self.table = QTableWidget(0, len(COLUMNS))
        self.table.setHorizontalHeaderLabels(COLUMNS)
        for c in range(2):
            self.table.horizontalHeader().setSectionResizeMode(c, QHeaderView.ResizeMode.Stretch)
        for c in range(2, len(COLUMNS)):
            self.table.horizontalHeader().setSectionResizeMode(c, QHeaderView.ResizeMode.ResizeToContents)
        self.table.verticalHeader().setVisible(False)
        self.table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        self.table.setSelectionBehavior(QTableWidget.SelectionBehavior.SelectRows)

        self.status = QLabel("")
        self.status.setWordWrap(True)

        layout = QVBoxLayout()
        layout.addLayout(path_row)
        layout.addLayout(btn_row)
        layout.addWidget(self.table)
        layout.addWidget(self.status)
        self.setLayout(layout)

        # --- Signals ---
        self.browse_btn.clicked.connect(self.browse)
        self.start_btn.clicked.connect(self.start)
        self.stop_btn.clicked.connect(self.stop)
        self.quit_btn.clicked.connect(self.close)
        self.export_btn.clicked.connect(self.export_results)

    def browse(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open Target List", "", "Text Files (*.txt);;All Files (*)")
        if path:
            self.path_edit.setText(path)

    def start(self):
        if not CLI_PATH.exists():
            QMessageBox.critical(self, "Error", f"CLI not found:\n{CLI_PATH}")
            return
        targets = self.path_edit.text().strip()
        if not targets:
            QMessageBox.warning(self, "No Targets", "Choose a target list file first.")
            return

        self.export_btn.setVisible(False)
        self.table.setRowCount(0)
        self.status.setText("")

        self.proc = QProcess(self)
        self.proc.setProcessChannelMode(QProcess.ProcessChannelMode.MergedChannels)
        self.proc.readyReadStandardOutput.connect(self.read_output)
        self.proc.errorOccurred.connect(self.proc_error)
        self.proc.finished.connect(self.proc_finished)

        self.proc.start(which_python(), [str(CLI_PATH), "--json", targets])
        if not self.proc.waitForStarted(3000):
            QMessageBox.critical(self, "Error", "Failed to start CLI process.")
            self.proc = None
            return

        self.stopping = False
        self.start_btn.setEnabled(False)
        self.stop_btn.setEnabled(True)

    def stop(self):
        if self.proc:
            self.stopping = True
            self.proc.terminate()
            if not self.proc.waitForFinished(1500):
                self.proc.kill()
                self.proc.waitForFinished(1000)
            self.proc = None
        if self.last_snapshot:
            self.export_btn.setVisible(True)
        self.start_btn.setEnabled(True)
        self.stop_btn.setEnabled(False)

    def proc_error(self, err):
        # Suppress crash notifications when we're intentionally stopping
        if self.stopping:
            return
        QMessageBox.critical(self, "Process Error", f"pingboard CLI error: {err}")
        self.stop()

    def proc_finished(self, code=0, _status=None):
        if not self.stopping and code:
            self.status.setText(f"CLI exited with status {code}")
        self.stopping = False
        self.start_btn.setEnabled(True)
        self.stop_btn.setEnabled(False)
        self.proc = None

    def read_output(self):
        if not self.proc:
            return
        while self.proc.canReadLine():
            raw = bytes(self.proc.readLine()).decode("utf-8", errors="ignore").strip()
            if not raw:
                continue
            targets = parse_line(raw)
            if targets is None:
                # warnings and errors from the CLI arrive on the merged channel
                self.status.setText(raw)
                continue
            self.last_snapshot = targets
            self.update_table(targets)

    def update_table(self, targets):
        # rows arrive already ranked; just mirror the order
        self.table.setRowCount(len(targets))
        for r, t in enumerate(targets):
            cells = t.get("row") or [t.get("name", "?"), t.get("address", ""), "--", "--", "--"]
            for c, val in enumerate(cells):
                item = self.table.item(r, c)
                if item is None:
                    item = QTableWidgetItem("")
                    self.table.setItem(r, c, item)
                item.setText(val)
                item.setToolTip(t.get("error") or "")
        for c in range(2, len(COLUMNS)):
            self.table.resizeColumnToContents(c)

    def export_results(self):
        if not self.last_snapshot:
            QMessageBox.information(self, "No Data", "No results available to export.")
            return
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Results As", "pingboard_results.txt", "Text Files (*.txt)"
        )
        if not path:
            return
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write("\n".join(export_lines(self.last_snapshot)) + "\n")
            QMessageBox.information(self, "Export Complete", f"Results saved to:\n{path}")
        except OSError as e:
            QMessageBox.critical(self, "Error", f"Failed to save file:\n{e}")

    def closeEvent(self, event):
        self.stopping = True
        self.stop()
        return super().closeEvent(event)


def main():
    app = QApplication(sys.argv)
    gui = PingBoardGUI()
    gui.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
