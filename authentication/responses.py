from rest_framework import status as http_status
from rest_framework.response import Response


def api_response(data=None, message=None, status=http_status.HTTP_200_OK, headers=None):
    """Successful response in the {"success", "message", "data"} envelope."""
    body = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return Response(body, status=status, headers=headers)
