from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    # App
    path('', include('tours.urls')),
]

handler404 = "tours.views.error_404"
handler500 = "tours.views.error_500"
