"""High-level tsserver operations.

Each method only builds the tsserver argument object and hands it to
``send()`` (or ``notify()`` for commands that never get a reply). Replies
are returned as DecodedMessage without interpretation; the payload is in
``reply.body``. Lines and offsets are 1-based, as tsserver expects.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from tsbridge.protocol.messages import DecodedMessage


def _location(file: str, line: int, offset: int) -> dict[str, Any]:
    return {"file": file, "line": line, "offset": offset}


def _span(
    file: str,
    start_line: int,
    start_offset: int,
    end_line: int,
    end_offset: int,
) -> dict[str, Any]:
    return {
        "file": file,
        "startLine": start_line,
        "startOffset": start_offset,
        "endLine": end_line,
        "endOffset": end_offset,
    }


def _compact(args: dict[str, Any]) -> dict[str, Any]:
    """Drop optional arguments that were not given."""
    return {k: v for k, v in args.items() if v is not None}


class LanguageOperations:
    """Pass-through wrappers, one per tsserver command.

    Subclasses provide ``send`` and ``notify``.
    """

    async def send(
        self,
        command: str,
        arguments: Any = None,
        *,
        timeout: float | None = None,
    ) -> DecodedMessage | None:
        raise NotImplementedError

    async def notify(self, command: str, arguments: Any = None) -> int:
        raise NotImplementedError

    # -- files ----------------------------------------------------------------

    async def open_file(
        self,
        file: str,
        file_content: str | None = None,
        project_root_path: str | None = None,
        script_kind: str | None = None,
    ) -> None:
        """Tell tsserver a file is open. No reply."""
        await self.send(
            "open",
            _compact(
                {
                    "file": file,
                    "fileContent": file_content,
                    "projectRootPath": project_root_path,
                    "scriptKindName": script_kind,
                }
            ),
        )

    async def change(
        self,
        file: str,
        start: dict[str, int],
        end: dict[str, int],
        new_text: str,
    ) -> None:
        """Replace the text between two {line, offset} positions. No reply."""
        await self.send(
            "change",
            {
                "file": file,
                "line": start["line"],
                "offset": start["offset"],
                "endLine": end["line"],
                "endOffset": end["offset"],
                "insertString": new_text,
            },
        )

    async def close_file(self, file: str) -> None:
        await self.send("close", {"file": file})

    async def reload(self, file: str, tmpfile: str) -> DecodedMessage | None:
        """Reload ``file`` from the contents of ``tmpfile``."""
        return await self.send("reload", {"file": file, "tmpfile": tmpfile})

    async def save_to(self, file: str, tmpfile: str) -> None:
        """Write tsserver's view of ``file`` to ``tmpfile``. No reply."""
        await self.send("saveto", {"file": file, "tmpfile": tmpfile})

    async def update_open(
        self,
        open_files: Sequence[dict[str, Any]] = (),
        changed_files: Sequence[dict[str, Any]] = (),
        closed_files: Sequence[str] = (),
    ) -> DecodedMessage | None:
        return await self.send(
            "updateOpen",
            {
                "openFiles": list(open_files),
                "changedFiles": list(changed_files),
                "closedFiles": list(closed_files),
            },
        )

    # -- navigation -----------------------------------------------------------

    async def definition(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("definition", _location(file, line, offset))

    async def definition_and_bound_span(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("definitionAndBoundSpan", _location(file, line, offset))

    async def find_source_definition(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("findSourceDefinition", _location(file, line, offset))

    async def type_definition(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("typeDefinition", _location(file, line, offset))

    async def implementation(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("implementation", _location(file, line, offset))

    async def references(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("references", _location(file, line, offset))

    async def document_highlights(
        self,
        file: str,
        line: int,
        offset: int,
        files_to_search: Sequence[str],
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        args["filesToSearch"] = list(files_to_search)
        return await self.send("documentHighlights", args)

    async def nav_bar(self, file: str) -> DecodedMessage | None:
        return await self.send("navbar", {"file": file})

    async def nav_tree(self, file: str) -> DecodedMessage | None:
        return await self.send("navtree", {"file": file})

    async def nav_tree_full(self, file: str) -> DecodedMessage | None:
        return await self.send("navtree-full", {"file": file})

    async def nav_to(
        self,
        search_value: str,
        file: str | None = None,
        max_result_count: int | None = None,
        current_file_only: bool | None = None,
    ) -> DecodedMessage | None:
        """Search symbols by name across the project."""
        return await self.send(
            "navto",
            _compact(
                {
                    "searchValue": search_value,
                    "file": file,
                    "maxResultCount": max_result_count,
                    "currentFileOnly": current_file_only,
                }
            ),
        )

    async def brace(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("brace", _location(file, line, offset))

    # -- info and completion --------------------------------------------------

    async def quick_info(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("quickinfo", _location(file, line, offset))

    async def completion_info(
        self,
        file: str,
        line: int,
        offset: int,
        prefix: str | None = None,
        trigger_character: str | None = None,
        trigger_kind: int | None = None,
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        args.update(
            _compact(
                {
                    "prefix": prefix,
                    "triggerCharacter": trigger_character,
                    "triggerKind": trigger_kind,
                }
            )
        )
        return await self.send("completionInfo", args)

    async def completion_details(
        self,
        file: str,
        line: int,
        offset: int,
        entry_names: Sequence[str | dict[str, Any]],
    ) -> DecodedMessage | None:
        """Details for completion entries, named or given as entry-id objects."""
        args = _location(file, line, offset)
        args["entryNames"] = list(entry_names)
        return await self.send("completionEntryDetails", args)

    async def signature_help(
        self,
        file: str,
        line: int,
        offset: int,
        trigger_reason: dict[str, Any] | None = None,
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        if trigger_reason is not None:
            args["triggerReason"] = trigger_reason
        return await self.send("signatureHelp", args)

    async def doc_comment_template(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("docCommentTemplate", _location(file, line, offset))

    async def jsx_closing_tag(self, file: str, line: int, offset: int) -> DecodedMessage | None:
        return await self.send("jsxClosingTag", _location(file, line, offset))

    async def linked_editing_range(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("linkedEditingRange", _location(file, line, offset))

    async def inlay_hints(self, file: str, start: int, length: int) -> DecodedMessage | None:
        """Inlay hints for a span given as character position and length."""
        return await self.send(
            "provideInlayHints", {"file": file, "start": start, "length": length}
        )

    async def selection_range(
        self, file: str, locations: Sequence[dict[str, int]]
    ) -> DecodedMessage | None:
        return await self.send("selectionRange", {"file": file, "locations": list(locations)})

    async def outlining_spans(self, file: str) -> DecodedMessage | None:
        return await self.send("getOutliningSpans", {"file": file})

    async def todo_comments(
        self, file: str, descriptors: Sequence[dict[str, Any]]
    ) -> DecodedMessage | None:
        return await self.send("todoComments", {"file": file, "descriptors": list(descriptors)})

    # -- diagnostics ----------------------------------------------------------

    async def get_errors(self, files: Sequence[str], delay: int = 0) -> int:
        """Request diagnostics for ``files``.

        No reply: tsserver emits syntaxDiag/semanticDiag/suggestionDiag
        events per file, then a requestCompleted event whose
        ``body.request_seq`` is the returned sequence number.
        """
        return await self.notify("geterr", {"files": list(files), "delay": delay})

    async def get_errors_for_project(self, file: str, delay: int = 0) -> int:
        """Like get_errors() for every file in the project of ``file``."""
        return await self.notify("geterrForProject", {"file": file, "delay": delay})

    async def semantic_diagnostics_sync(
        self, file: str, include_line_position: bool = False
    ) -> DecodedMessage | None:
        return await self.send(
            "semanticDiagnosticsSync",
            {"file": file, "includeLinePosition": include_line_position},
        )

    async def syntactic_diagnostics_sync(
        self, file: str, include_line_position: bool = False
    ) -> DecodedMessage | None:
        return await self.send(
            "syntacticDiagnosticsSync",
            {"file": file, "includeLinePosition": include_line_position},
        )

    async def suggestion_diagnostics_sync(
        self, file: str, include_line_position: bool = False
    ) -> DecodedMessage | None:
        return await self.send(
            "suggestionDiagnosticsSync",
            {"file": file, "includeLinePosition": include_line_position},
        )

    # -- formatting and editing -----------------------------------------------

    async def format(
        self,
        file: str,
        line: int,
        offset: int,
        end_line: int,
        end_offset: int,
    ) -> DecodedMessage | None:
        return await self.send(
            "format",
            {
                "file": file,
                "line": line,
                "offset": offset,
                "endLine": end_line,
                "endOffset": end_offset,
            },
        )

    async def format_on_key(
        self, file: str, line: int, offset: int, key: str
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        args["key"] = key
        return await self.send("formatonkey", args)

    async def indentation(
        self,
        file: str,
        line: int,
        offset: int,
        options: dict[str, Any] | None = None,
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        if options is not None:
            args["options"] = options
        return await self.send("indentation", args)

    async def toggle_line_comment(
        self, file: str, start_line: int, start_offset: int, end_line: int, end_offset: int
    ) -> DecodedMessage | None:
        return await self.send(
            "toggleLineComment", _span(file, start_line, start_offset, end_line, end_offset)
        )

    async def toggle_multiline_comment(
        self, file: str, start_line: int, start_offset: int, end_line: int, end_offset: int
    ) -> DecodedMessage | None:
        return await self.send(
            "toggleMultilineComment", _span(file, start_line, start_offset, end_line, end_offset)
        )

    async def comment_selection(
        self, file: str, start_line: int, start_offset: int, end_line: int, end_offset: int
    ) -> DecodedMessage | None:
        return await self.send(
            "commentSelection", _span(file, start_line, start_offset, end_line, end_offset)
        )

    async def uncomment_selection(
        self, file: str, start_line: int, start_offset: int, end_line: int, end_offset: int
    ) -> DecodedMessage | None:
        return await self.send(
            "uncommentSelection", _span(file, start_line, start_offset, end_line, end_offset)
        )

    async def rename(
        self,
        file: str,
        line: int,
        offset: int,
        find_in_comments: bool = False,
        find_in_strings: bool = False,
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        args["findInComments"] = find_in_comments
        args["findInStrings"] = find_in_strings
        return await self.send("rename", args)

    # -- refactoring and code fixes -------------------------------------------

    async def code_fixes(
        self,
        file: str,
        start_line: int,
        start_offset: int,
        end_line: int,
        end_offset: int,
        error_codes: Sequence[int],
    ) -> DecodedMessage | None:
        args = _span(file, start_line, start_offset, end_line, end_offset)
        args["errorCodes"] = list(error_codes)
        return await self.send("getCodeFixes", args)

    async def combined_code_fix(self, file: str, fix_id: str) -> DecodedMessage | None:
        return await self.send(
            "getCombinedCodeFix",
            {"scope": {"type": "file", "args": {"file": file}}, "fixId": fix_id},
        )

    async def supported_code_fixes(self, file: str | None = None) -> DecodedMessage | None:
        return await self.send("getSupportedCodeFixes", {"file": file} if file else None)

    async def applicable_refactors(
        self,
        file: str,
        line: int,
        offset: int,
        trigger_reason: str | None = None,
        kind: str | None = None,
        include_interactive_actions: bool | None = None,
    ) -> DecodedMessage | None:
        args = _location(file, line, offset)
        args.update(
            _compact(
                {
                    "triggerReason": trigger_reason,
                    "kind": kind,
                    "includeInteractiveActions": include_interactive_actions,
                }
            )
        )
        return await self.send("getApplicableRefactors", args)

    async def edits_for_refactor(
        self,
        file: str,
        refactor: str,
        action: str,
        start_line: int,
        start_offset: int,
        end_line: int,
        end_offset: int,
        interactive_refactor_arguments: dict[str, Any] | None = None,
    ) -> DecodedMessage | None:
        args = _span(file, start_line, start_offset, end_line, end_offset)
        args["refactor"] = refactor
        args["action"] = action
        if interactive_refactor_arguments is not None:
            args["interactiveRefactorArguments"] = interactive_refactor_arguments
        return await self.send("getEditsForRefactor", args)

    async def move_to_refactoring_file_suggestions(
        self,
        file: str,
        start_line: int,
        start_offset: int,
        end_line: int,
        end_offset: int,
        kind: str | None = None,
    ) -> DecodedMessage | None:
        args = _span(file, start_line, start_offset, end_line, end_offset)
        if kind is not None:
            args["kind"] = kind
        return await self.send("getMoveToRefactoringFileSuggestions", args)

    async def organize_imports(self, file: str, mode: str | None = None) -> DecodedMessage | None:
        """Organize imports; ``mode`` is "All", "SortAndCombine" or "RemoveUnused"."""
        return await self.send(
            "organizeImports",
            _compact({"scope": {"type": "file", "args": {"file": file}}, "mode": mode}),
        )

    async def edits_for_file_rename(
        self, old_file_path: str, new_file_path: str
    ) -> DecodedMessage | None:
        return await self.send(
            "getEditsForFileRename",
            {"oldFilePath": old_file_path, "newFilePath": new_file_path},
        )

    # -- call hierarchy -------------------------------------------------------

    async def prepare_call_hierarchy(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("prepareCallHierarchy", _location(file, line, offset))

    async def provide_call_hierarchy_incoming_calls(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("provideCallHierarchyIncomingCalls", _location(file, line, offset))

    async def provide_call_hierarchy_outgoing_calls(
        self, file: str, line: int, offset: int
    ) -> DecodedMessage | None:
        return await self.send("provideCallHierarchyOutgoingCalls", _location(file, line, offset))

    # -- projects and server --------------------------------------------------

    async def project_info(
        self, file: str, need_file_name_list: bool = False
    ) -> DecodedMessage | None:
        return await self.send(
            "projectInfo", {"file": file, "needFileNameList": need_file_name_list}
        )

    async def reload_projects(self) -> None:
        await self.send("reloadProjects")

    async def open_external_project(self, project: dict[str, Any]) -> DecodedMessage | None:
        """Open a project described by {projectFileName, rootFiles, options}."""
        return await self.send("openExternalProject", project)

    async def open_external_projects(
        self, projects: Sequence[dict[str, Any]]
    ) -> DecodedMessage | None:
        return await self.send("openExternalProjects", {"projects": list(projects)})

    async def close_external_project(self, project_file_name: str) -> DecodedMessage | None:
        return await self.send("closeExternalProject", {"projectFileName": project_file_name})

    async def set_compiler_options_for_inferred_projects(
        self,
        options: dict[str, Any],
        project_root_path: str | None = None,
    ) -> DecodedMessage | None:
        return await self.send(
            "compilerOptionsForInferredProjects",
            _compact({"options": options, "projectRootPath": project_root_path}),
        )

    async def configure(
        self,
        host_info: str | None = None,
        format_options: dict[str, Any] | None = None,
        preferences: dict[str, Any] | None = None,
        file: str | None = None,
    ) -> DecodedMessage | None:
        return await self.send(
            "configure",
            _compact(
                {
                    "hostInfo": host_info,
                    "formatOptions": format_options,
                    "preferences": preferences,
                    "file": file,
                }
            ),
        )

    async def status(self) -> DecodedMessage | None:
        """Server status; the body carries the TypeScript version."""
        return await self.send("status")

    async def compile_on_save_affected_file_list(self, file: str) -> DecodedMessage | None:
        return await self.send("compileOnSaveAffectedFileList", {"file": file})

    async def compile_on_save_emit_file(
        self, file: str, forced: bool | None = None
    ) -> DecodedMessage | None:
        return await self.send("compileOnSaveEmitFile", _compact({"file": file, "forced": forced}))
