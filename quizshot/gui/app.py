from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from PySide6 import QtCore, QtGui, QtWidgets

from quizshot.config.cache import ConfigCache
from quizshot.export.selection import ExportReport
from quizshot.pipeline.session import CaptureSession

VIDEO_FILTER = "视频文件 (*.mp4 *.mkv *.mov *.webm *.avi);;所有文件 (*)"
SUBTITLE_FILTER = "字幕文件 (*.srt *.vtt *.ass *.ssa *.txt);;所有文件 (*)"

log = logging.getLogger("quizshot.gui")


class AsyncWorker(QtCore.QThread):
    """在后台线程中以独立事件循环执行一个协程。"""

    progress_changed = QtCore.Signal(float)
    finished_with_result = QtCore.Signal(object)
    failed = QtCore.Signal(str)

    def __init__(self, factory: Callable[["AsyncWorker"], Awaitable[Any]], parent=None):
        super().__init__(parent)
        self._factory = factory

    def run(self):
        try:
            result = asyncio.run(self._factory(self))
        except Exception as e:  # noqa: BLE001
            self.failed.emit(str(e))
            return
        self.finished_with_result.emit(result)


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, cache_path: Path | str = "cache.json"):
        super().__init__()
        self.setWindowTitle("quiz-shot：题目截图生成")
        self.resize(1100, 720)

        self.cache = ConfigCache(cache_path)
        self.cfg = self.cache.load()
        self.session = CaptureSession(self.cfg)
        self.current_worker: Optional[AsyncWorker] = None

        self._build_ui()
        self._connect_signals()
        self._apply_styles()
        self._update_buttons()

    def _build_ui(self):
        """
        布局：
        - 顶部：视频/字幕选择、导出目录、开始按钮与进度；
        - 中部：截图缩略图（可勾选）；
        - 底部：错误列表与导出操作。
        """
        central = QtWidgets.QWidget()
        root = QtWidgets.QVBoxLayout(central)
        root.setContentsMargins(8, 8, 8, 8)
        root.setSpacing(6)
        self.setCentralWidget(central)

        form = QtWidgets.QFormLayout()
        self.btn_pick_video = QtWidgets.QPushButton("选择视频")
        self.lbl_video = QtWidgets.QLabel("未选择")
        video_row = QtWidgets.QHBoxLayout()
        video_row.addWidget(self.btn_pick_video)
        video_row.addWidget(self.lbl_video, 1)
        form.addRow("视频", video_row)

        self.btn_pick_subtitle = QtWidgets.QPushButton("选择字幕")
        self.lbl_subtitle = QtWidgets.QLabel("未选择")
        sub_row = QtWidgets.QHBoxLayout()
        sub_row.addWidget(self.btn_pick_subtitle)
        sub_row.addWidget(self.lbl_subtitle, 1)
        form.addRow("字幕", sub_row)

        self.edit_output_dir = QtWidgets.QLineEdit(str(self.cfg.export.outputs_root))
        self.btn_pick_output = QtWidgets.QPushButton("浏览")
        out_row = QtWidgets.QHBoxLayout()
        out_row.addWidget(self.edit_output_dir, 1)
        out_row.addWidget(self.btn_pick_output)
        form.addRow("导出目录", out_row)
        root.addLayout(form)

        run_row = QtWidgets.QHBoxLayout()
        self.btn_generate = QtWidgets.QPushButton("生成截图")
        self.progress = QtWidgets.QProgressBar()
        self.progress.setRange(0, 100)
        run_row.addWidget(self.btn_generate)
        run_row.addWidget(self.progress, 1)
        root.addLayout(run_row)

        # 截图缩略图：勾选状态与导出管理器的选择集合同步
        self.list_shots = QtWidgets.QListWidget()
        self.list_shots.setViewMode(QtWidgets.QListView.ViewMode.IconMode)
        self.list_shots.setIconSize(QtCore.QSize(240, 135))
        self.list_shots.setResizeMode(QtWidgets.QListView.ResizeMode.Adjust)
        self.list_shots.setSpacing(6)
        root.addWidget(self.list_shots, 1)

        export_row = QtWidgets.QHBoxLayout()
        self.btn_toggle_all = QtWidgets.QPushButton("全选")
        self.btn_export_selected = QtWidgets.QPushButton("下载所选")
        self.btn_export_all = QtWidgets.QPushButton("下载全部")
        export_row.addWidget(self.btn_toggle_all)
        export_row.addStretch(1)
        export_row.addWidget(self.btn_export_selected)
        export_row.addWidget(self.btn_export_all)
        root.addLayout(export_row)

        if not self.session.exports.capabilities.bulk:
            warn = QtWidgets.QLabel("打包下载不可用：截图将逐张保存。")
            warn.setObjectName("warning")
            root.addWidget(warn)

        self.list_errors = QtWidgets.QListWidget()
        self.list_errors.setMaximumHeight(120)
        root.addWidget(self.list_errors)

        self.statusBar().showMessage("请选择视频与字幕")

    def _connect_signals(self):
        self.btn_pick_video.clicked.connect(self._pick_video)
        self.btn_pick_subtitle.clicked.connect(self._pick_subtitle)
        self.btn_pick_output.clicked.connect(self._pick_output_dir)
        self.edit_output_dir.editingFinished.connect(self._save_config)
        self.btn_generate.clicked.connect(self._generate)
        self.btn_toggle_all.clicked.connect(self._toggle_all)
        self.btn_export_selected.clicked.connect(lambda: self._export_bulk(selected=True))
        self.btn_export_all.clicked.connect(lambda: self._export_bulk(selected=False))
        self.list_shots.itemChanged.connect(self._on_item_changed)
        self.list_shots.itemDoubleClicked.connect(self._export_item)

    # === 输入 ===
    def _pick_video(self):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "选择视频", "", VIDEO_FILTER)
        if not path:
            return
        self.session.load_video(path)
        self.lbl_video.setText(Path(path).name)
        self._show_errors()
        self._update_buttons()

    def _pick_subtitle(self):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "选择字幕", "", SUBTITLE_FILTER)
        if not path:
            return
        try:
            questions = self.session.load_subtitle(path)
        except (OSError, ValueError) as e:
            self._show_errors([f"读取字幕失败：{e}"])
            return
        self.lbl_subtitle.setText(f"{Path(path).name}（{len(questions)} 个题目）")
        self._show_errors()
        self._update_buttons()

    def _pick_output_dir(self):
        d = QtWidgets.QFileDialog.getExistingDirectory(self, "选择导出目录", self.edit_output_dir.text())
        if d:
            self.edit_output_dir.setText(d)
            self._save_config()

    def _save_config(self):
        text = self.edit_output_dir.text().strip()
        if not text:
            return
        self.session.set_output_dir(text)
        self.cache.save(self.cfg)

    # === 运行 ===
    def _start_worker(self, factory, on_done):
        worker = AsyncWorker(factory, self)
        worker.finished_with_result.connect(on_done)
        worker.failed.connect(self._on_failed)
        worker.finished.connect(self._on_worker_finished)
        self.current_worker = worker
        self._update_buttons()
        worker.start()
        return worker

    def _generate(self):
        if not self.session.can_generate:
            return
        self.list_shots.clear()
        self.list_errors.clear()
        self.progress.setValue(0)
        self.statusBar().showMessage("正在截图…")
        worker = self._start_worker(
            lambda w: self.session.generate(on_progress=w.progress_changed.emit),
            self._on_generated,
        )
        worker.progress_changed.connect(lambda p: self.progress.setValue(int(p * 100)))

    def _on_generated(self, run):
        self._refresh_shots()
        self._show_errors()
        if run is not None:
            self.statusBar().showMessage(f"完成：{len(run.results)}/{run.total} 张截图")

    def _on_failed(self, message: str):
        self._show_errors([message])
        self.statusBar().showMessage("操作失败")

    def _on_worker_finished(self):
        self.current_worker = None
        self._update_buttons()

    # === 选择 ===
    def _refresh_shots(self):
        self.list_shots.blockSignals(True)
        try:
            self.list_shots.clear()
            selected = self.session.exports.selected
            for r in self.session.exports.results:
                item = QtWidgets.QListWidgetItem(QtGui.QIcon(str(r.image.path)), r.display_timestamp)
                item.setData(QtCore.Qt.ItemDataRole.UserRole, r.id)
                item.setToolTip(r.filename)
                item.setFlags(item.flags() | QtCore.Qt.ItemFlag.ItemIsUserCheckable)
                item.setCheckState(QtCore.Qt.CheckState.Checked if r.id in selected
                                   else QtCore.Qt.CheckState.Unchecked)
                self.list_shots.addItem(item)
        finally:
            self.list_shots.blockSignals(False)
        self._update_buttons()

    def _on_item_changed(self, item: QtWidgets.QListWidgetItem):
        rid = item.data(QtCore.Qt.ItemDataRole.UserRole)
        checked = item.checkState() == QtCore.Qt.CheckState.Checked
        if (rid in self.session.exports.selected) != checked:
            self.session.exports.toggle(rid)
        self._update_buttons()

    def _toggle_all(self):
        self.session.exports.toggle_all()
        self._refresh_shots()

    # === 导出 ===
    def _export_bulk(self, *, selected: bool):
        exports = self.session.exports
        if selected and not exports.selected:
            self._show_errors(["请至少选择一张截图"])
            return
        factory = (lambda w: exports.export_selected()) if selected else (lambda w: exports.export_all())
        self.statusBar().showMessage("正在导出…")
        self._start_worker(factory, self._on_exported)

    def _export_item(self, item: QtWidgets.QListWidgetItem):
        rid = item.data(QtCore.Qt.ItemDataRole.UserRole)
        result = next((r for r in self.session.exports.results if r.id == rid), None)
        if result is None or self.current_worker is not None:
            return
        self._start_worker(lambda w: self.session.exports.export_one(result),
                           lambda p: self.statusBar().showMessage(f"已保存：{p}"))

    def _on_exported(self, report: ExportReport):
        if report.archive_path is not None:
            self.statusBar().showMessage(f"已导出压缩包：{report.archive_path}")
            self._show_errors([])
            return
        msgs = ["打包下载不可用，已逐张保存截图"] + report.errors
        self._show_errors(msgs)
        self.statusBar().showMessage(f"已逐张导出 {len(report.delivered)} 张截图")

    # === 展示 ===
    def _show_errors(self, messages: Optional[list[str]] = None):
        self.list_errors.clear()
        for m in (self.session.errors if messages is None else messages):
            self.list_errors.addItem(m)

    def _update_buttons(self):
        idle = self.current_worker is None
        has_results = bool(self.session.exports.results)
        self.btn_generate.setEnabled(idle and self.session.can_generate)
        self.btn_pick_video.setEnabled(idle)
        self.btn_toggle_all.setEnabled(idle and has_results)
        self.btn_toggle_all.setText("全不选" if self.session.exports.is_all_selected else "全选")
        self.btn_export_selected.setEnabled(idle and bool(self.session.exports.selected))
        self.btn_export_all.setEnabled(idle and has_results)

    def closeEvent(self, event):  # type: ignore[override]
        # 关闭窗口时中止后台任务并释放全部截图与视频资源
        try:
            self._save_config()
        except OSError as e:
            log.warning("保存配置失败", extra={"error": str(e)})
        w = self.current_worker
        if w is not None and w.isRunning():
            self.session.request_abort()
            w.wait(3000)
        self.session.close()
        return super().closeEvent(event)

    def _apply_styles(self):
        """应用统一 QSS 样式（深色风格）。"""
        qss = """
        QWidget { background-color: #202225; color: #E6E6E6; font-size: 13px; }
        QLineEdit { background: #2B2F33; border: 1px solid #3A3D41; border-radius: 4px; padding: 4px 6px; }
        QLineEdit:focus { border: 1px solid #4EA1FF; }
        QPushButton { background: #3A3D41; border: 1px solid #474B50; border-radius: 6px; padding: 6px 12px; }
        QPushButton:hover { background: #454A50; }
        QPushButton:disabled { color: #6B7075; }
        QListWidget { background: #2B2F33; border: 1px solid #3A3D41; }
        QProgressBar { border: 1px solid #3A3D41; border-radius: 4px; text-align: center; }
        QProgressBar::chunk { background: #2F6FED; }
        QLabel#warning { color: #E8B339; }
        """
        self.setStyleSheet(qss)


def main():
    import sys

    app = QtWidgets.QApplication(sys.argv)
    w = MainWindow()
    w.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
