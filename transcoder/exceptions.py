class TranscoderError(Exception):
    """Base class for transcoder errors"""


class TaskExists(TranscoderError):
    """An active task already exists for the source file"""

    def __init__(self, source_file_id):
        self.source_file_id = source_file_id
        super().__init__(f"An active task already exists for file {source_file_id}")


class TranscodeFailed(TranscoderError):
    """The transcoding engine exited with an error or timed out"""

class AttemptSuperseded(TranscoderError):
    """The task was recycled and reclaimed while this attempt was running"""

    def __init__(self, task_id):
        self.task_id = task_id
        super().__init__(f"Task {task_id} is no longer owned by this attempt")
