class TileCompilerError(Exception):
    """
    Base class for all errors terminating a compilation run
    """
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MapParseError(TileCompilerError):
    pass


class CatalogInconsistencyError(TileCompilerError):
    pass


class UnknownTileReferenceError(TileCompilerError):
    def __init__(self, tile_id: int, x: int, y: int):
        super().__init__(f'Map references tile {tile_id} at ({x},{y}) which is absent from the tile catalog')
        self.tile_id = tile_id
        self.x = x
        self.y = y


class InconsistentDimensionsError(TileCompilerError):
    pass


class SizeLimitExceeded(TileCompilerError):
    pass


class BankOverflowError(TileCompilerError):
    pass


class TileGraphicsError(TileCompilerError):
    pass
