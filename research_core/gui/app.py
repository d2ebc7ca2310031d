import threading
import tkinter as tk
from tkinter import messagebox, scrolledtext

from research_core.api.service import get_default_controller
from research_core.domain.exceptions import BusinessError
from research_core.domain.models import BotMessage, SessionStatus


class App:
    def __init__(self, root, controller=None):
        self.root = root
        self.root.title("Research Console")
        self.controller = controller or get_default_controller()
        self.store = self.controller.store
        self.show_details = False
        self._conv_ids = []
        main = tk.PanedWindow(root, orient=tk.HORIZONTAL)
        main.pack(fill=tk.BOTH, expand=True)
        left = tk.Frame(main)
        right = tk.Frame(main)
        main.add(left, minsize=240)
        main.add(right)
        tk.Label(left, text="Conversations").pack(anchor=tk.W)
        self.conv_list = tk.Listbox(left, height=20, exportselection=False)
        self.conv_list.pack(fill=tk.BOTH, expand=True)
        self.conv_list.bind("<<ListboxSelect>>", self.on_select_conv)
        lf_btns = tk.Frame(left)
        lf_btns.pack(fill=tk.X)
        tk.Button(lf_btns, text="New Question", command=self.on_new).pack(side=tk.LEFT)
        tk.Button(lf_btns, text="Delete", command=self.on_delete).pack(side=tk.LEFT)
        self.chat = scrolledtext.ScrolledText(right, width=80, height=20, wrap=tk.WORD)
        self.chat.pack(fill=tk.BOTH, expand=True)
        self.chat.tag_config("user", foreground="#1a73e8")
        self.chat.tag_config("bot", foreground="#34a853")
        self.chat.tag_config("meta", foreground="#5f6368")
        self.chat.tag_config("error", foreground="#d93025")
        self.details_btn = tk.Button(right, text="Show Details", command=self.on_toggle_details)
        self.details_btn.pack(anchor=tk.W)
        self.steps = scrolledtext.ScrolledText(right, height=6, wrap=tk.WORD)
        rt_in = tk.Frame(right)
        rt_in.pack(fill=tk.X, side=tk.BOTTOM)
        self.entry = tk.Entry(rt_in)
        self.entry.pack(side=tk.LEFT, fill=tk.X, expand=True)
        self.entry.bind("<Return>", self.on_send_event)
        self.send_btn = tk.Button(rt_in, text="Send", command=self.on_send)
        self.send_btn.pack(side=tk.LEFT)
        tk.Button(rt_in, text="Download Debug Log", command=self.on_export).pack(side=tk.LEFT)
        self.status = tk.Label(right, text="Ready", anchor=tk.W)
        self.status.pack(fill=tk.X, side=tk.BOTTOM)
        self.refresh()

    def refresh(self):
        convs = self.store.list_conversations()
        self._conv_ids = [c.id for c in convs]
        self.conv_list.delete(0, tk.END)
        for c in convs:
            self.conv_list.insert(tk.END, c.title)
        selected = self.store.selected_id
        if selected in self._conv_ids:
            idx = self._conv_ids.index(selected)
            self.conv_list.selection_clear(0, tk.END)
            self.conv_list.selection_set(idx)
        self.render_chat()

    def render_chat(self):
        self.chat.delete(1.0, tk.END)
        conv = self.store.get(self.store.selected_id)
        for m in conv.messages:
            if isinstance(m, BotMessage):
                tag = "error" if m.text.startswith("Error:") else "bot"
                self.chat.insert(tk.END, f"{m.text}\n", tag)
                if m.references:
                    self.chat.insert(tk.END, "References:\n", "meta")
                    for ref in m.references:
                        self.chat.insert(tk.END, f"  - {ref.exact_quote} ({ref.url})\n", "meta")
                if m.evaluation:
                    verdict = "Definitive" if m.evaluation.definitive else "Not definitive"
                    self.chat.insert(tk.END, f"Evaluation: {m.evaluation.reason} [{verdict}]\n", "meta")
            else:
                self.chat.insert(tk.END, f"You: {m.text}\n", "user")
            self.chat.insert(tk.END, "\n")
        session = self.controller.active_session
        streaming = session is not None and session.conversation_id == conv.id and not session.is_terminal
        if streaming:
            self.chat.insert(tk.END, "Thinking...\n", "meta")
        self.chat.see(tk.END)
        self.render_steps()
        self.send_btn.config(state=tk.DISABLED if streaming or conv.completed else tk.NORMAL)

    def render_steps(self):
        self.steps.delete(1.0, tk.END)
        for step in self.controller.progress_steps:
            line = f"{step.step_label} {step.action_summary}"
            if step.thoughts_summary:
                line += f" {step.thoughts_summary}"
            self.steps.insert(tk.END, line + "\n")
        self.steps.see(tk.END)

    def on_toggle_details(self):
        self.show_details = not self.show_details
        if self.show_details:
            self.steps.pack(fill=tk.X, after=self.details_btn)
            self.details_btn.config(text="Hide Details")
        else:
            self.steps.pack_forget()
            self.details_btn.config(text="Show Details")

    def on_select_conv(self, event):
        sel = self.conv_list.curselection()
        if not sel:
            return
        self.controller.select(self._conv_ids[sel[0]])
        self.render_chat()

    def on_new(self):
        self.controller.new_question()
        self.status.config(text="New question")
        self.refresh()

    def on_delete(self):
        cid = self.store.selected_id
        deleted = self.controller.delete(
            cid,
            confirm=lambda conv: messagebox.askyesno("Delete", f"Delete \"{conv.title}\"?"),
        )
        if deleted:
            self.status.config(text="Conversation deleted")
            self.refresh()

    def on_send(self):
        text = self.entry.get().strip()
        if not text:
            return
        try:
            session = self.controller.begin(self.store.selected_id, text)
        except BusinessError as e:
            messagebox.showwarning("Cannot submit", e.message)
            return
        if session is None:
            return
        self.entry.delete(0, tk.END)
        self.status.config(text="Submitting...")
        self.refresh()

        def dispatch(fn):
            self.root.after(0, self.on_stream_update, fn)

        threading.Thread(target=self._run_session, args=(session, text, dispatch), daemon=True).start()

    def _run_session(self, session, text, dispatch):
        # 工作线程：只做网络读写，状态变更全部经 root.after 回到界面线程
        handle = self.controller.connect(session, text, dispatch)
        if handle is not None:
            session.consume(dispatch, handle=handle)

    def on_send_event(self, event):
        if str(self.send_btn["state"]) != tk.DISABLED:
            self.on_send()
        return "break"

    def on_stream_update(self, fn):
        fn()
        session = self.controller.active_session
        if session is not None and session.is_terminal:
            self.status.config(text=session.status.value.capitalize())
            self.refresh()
        else:
            if session is not None and session.status is SessionStatus.STREAMING:
                self.status.config(text="Streaming...")
            self.render_chat()

    def on_export(self):
        try:
            path = self.controller.export_debug()
        except BusinessError as e:
            messagebox.showerror("Export failed", e.message)
            return
        self.status.config(text=f"Debug log saved to {path}")


def main():
    root = tk.Tk()
    App(root)
    root.mainloop()


if __name__ == "__main__":
    main()
